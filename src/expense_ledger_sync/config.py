"""Configuration loader and validation for ledger sync settings."""

from datetime import date
from pathlib import Path
from typing import Any, Optional
import logging
import os

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class PagingConfig(BaseModel):
    """Page size, page ceiling and inter-page delay for one fetch profile."""

    page_size: int = 25
    max_pages: int = 20
    page_delay_seconds: float = 0.5


class CardSourceConfig(BaseModel):
    """Configuration for the card spend platform (Bill.com Spend & Expense)."""

    base_url: str = ""
    api_token: str = ""
    timeout_seconds: float = 30.0
    routine: PagingConfig = Field(default_factory=PagingConfig)
    historical: PagingConfig = Field(
        default_factory=lambda: PagingConfig(
            page_size=50, max_pages=100, page_delay_seconds=0.3
        )
    )
    reference_page_size: int = 100
    posted_transaction_type: str = "CLEAR"


class ErpSourceConfig(BaseModel):
    """Configuration for the ERP (NetSuite SuiteTalk REST)."""

    account_id: str = ""
    consumer_key: str = ""
    consumer_secret: str = ""
    token_id: str = ""
    token_secret: str = ""
    timeout_seconds: float = 30.0
    page_size: int = 100
    max_pages: int = 20
    from_date: date = date(2026, 1, 1)


class LedgerConfig(BaseModel):
    """Configuration for the Supabase-hosted ledger store."""

    url: str = ""
    service_role_key: str = ""
    records_table: str = "expenses"
    sync_runs_table: str = "sync_logs"
    upsert_function: str = "upsert_ledger_record"
    flag_lookup_chunk_size: int = 100


class CustomFieldNames(BaseModel):
    """Names of the card platform custom fields that feed ledger columns."""

    branch: str = "Branch"
    department: str = "Department"
    category: str = "Purchase Category"


class ReconciliationConfig(BaseModel):
    """Configuration for the reconciliation engine."""

    card_id_prefix: str = "BILL-"
    erp_id_prefix: str = "NS-"
    default_currency: str = "USD"
    unknown_user: str = "Unknown User"
    unknown_merchant: str = "Unknown Merchant"
    custom_fields: CustomFieldNames = Field(default_factory=CustomFieldNames)
    branch_aliases: dict[str, str] = Field(default_factory=dict)
    branch_prefix_rewrites: dict[str, str] = Field(default_factory=dict)
    branch_token_max_length: int = 50
    branch_token_rejected_chars: list[str] = Field(default_factory=lambda: ["=", "-"])
    auto_flag_keyword: str = "reimburse"
    auto_flag_category: str = "Needs Review"
    amount_cents_threshold: float = 10000.0
    routine_days_back: int = 14
    cron_days_back: int = 8
    historical_start_date: date = date(2025, 10, 1)
    progress_log_interval: int = 100


class SlackConfig(BaseModel):
    """Configuration for chat notifications."""

    webhook_url: str = ""
    api_token: str = ""
    api_base_url: str = "https://slack.com/api"
    timeout_seconds: float = 10.0
    notify_on_sync: bool = False
    dashboard_url: str = ""
    department_channels: dict[str, dict[str, str]] = Field(default_factory=dict)


class ApiConfig(BaseModel):
    """Configuration for the HTTP trigger surface."""

    cron_secret: str = ""
    host: str = "0.0.0.0"
    port: int = 8000


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None  # rotating log file, off when unset


class SyncConfig(BaseModel):
    """Main configuration model for ledger sync."""

    card_source: CardSourceConfig = Field(default_factory=CardSourceConfig)
    erp_source: ErpSourceConfig = Field(default_factory=ErpSourceConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)
    slack: SlackConfig = Field(default_factory=SlackConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    config_file_path: Optional[str] = None


# (section, key) pairs populated from the environment when set
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "BILL_API_TOKEN": ("card_source", "api_token"),
    "BILL_BASE_URL": ("card_source", "base_url"),
    "NETSUITE_ACCOUNT_ID": ("erp_source", "account_id"),
    "NETSUITE_CONSUMER_KEY": ("erp_source", "consumer_key"),
    "NETSUITE_CONSUMER_SECRET": ("erp_source", "consumer_secret"),
    "NETSUITE_TOKEN_ID": ("erp_source", "token_id"),
    "NETSUITE_TOKEN_SECRET": ("erp_source", "token_secret"),
    "SUPABASE_URL": ("ledger", "url"),
    "SUPABASE_SERVICE_ROLE_KEY": ("ledger", "service_role_key"),
    "SLACK_WEBHOOK_URL": ("slack", "webhook_url"),
    "SLACK_API_TOKEN": ("slack", "api_token"),
    "CRON_SECRET": ("api", "cron_secret"),
}


def get_default_config() -> dict[str, Any]:
    """Return the default configuration as a dictionary."""
    return {
        "card_source": {
            "base_url": "",
            "timeout_seconds": 30.0,
            "routine": {"page_size": 25, "max_pages": 20, "page_delay_seconds": 0.5},
            "historical": {"page_size": 50, "max_pages": 100, "page_delay_seconds": 0.3},
            "reference_page_size": 100,
            "posted_transaction_type": "CLEAR",
        },
        "erp_source": {
            "timeout_seconds": 30.0,
            "page_size": 100,
            "max_pages": 20,
            "from_date": "2026-01-01",
        },
        "ledger": {
            "records_table": "expenses",
            "sync_runs_table": "sync_logs",
            "upsert_function": "upsert_ledger_record",
            "flag_lookup_chunk_size": 100,
        },
        "reconciliation": {
            "card_id_prefix": "BILL-",
            "erp_id_prefix": "NS-",
            "default_currency": "USD",
            "unknown_user": "Unknown User",
            "unknown_merchant": "Unknown Merchant",
            "custom_fields": {
                "branch": "Branch",
                "department": "Department",
                "category": "Purchase Category",
            },
            "branch_aliases": {
                "Phoenix:Phx - SouthEast": "Phoenix - SouthEast",
                "Phoenix:Phx - SouthWest": "Phoenix - SouthWest",
                "Phoenix:Phx - North": "Phoenix - North",
                "Las Vegas": "Las Vegas",
                "Corporate": "Corporate",
            },
            "branch_prefix_rewrites": {"Phoenix:Phx": "Phoenix"},
            "branch_token_max_length": 50,
            "branch_token_rejected_chars": ["=", "-"],
            "auto_flag_keyword": "reimburse",
            "auto_flag_category": "Needs Review",
            "amount_cents_threshold": 10000.0,
            "routine_days_back": 14,
            "cron_days_back": 8,
            "historical_start_date": "2025-10-01",
            "progress_log_interval": 100,
        },
        "slack": {
            "api_base_url": "https://slack.com/api",
            "timeout_seconds": 10.0,
            "notify_on_sync": False,
            "dashboard_url": "",
            "department_channels": {},
        },
        "api": {
            "host": "0.0.0.0",
            "port": 8000,
        },
        "logging": {
            "level": "INFO",
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        },
    }


def load_config(
    config_path: Optional[Path] = None,
    environ: Optional[dict[str, str]] = None,
) -> SyncConfig:
    """
    Load configuration from a YAML file or use defaults.

    Secrets are never expected in the YAML file; they are read from the
    environment variables listed in ``ENV_OVERRIDES`` and win over any file value.

    Args:
        config_path: Path to YAML configuration file (optional)
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        SyncConfig object with loaded or default settings
    """
    config_dict = get_default_config()

    if config_path and config_path.exists():
        logger.info(f"Loading configuration from: {config_path}")
        with open(config_path, "r") as f:
            user_config = yaml.safe_load(f) or {}

        config_dict = _deep_merge(config_dict, user_config)
        config_dict["config_file_path"] = str(config_path)
    else:
        logger.info("Using default configuration")

    config_dict = _apply_env_overrides(config_dict, os.environ if environ is None else environ)

    return SyncConfig(**config_dict)


def _apply_env_overrides(config_dict: dict, environ: Any) -> dict:
    """Copy configured environment variables into their config sections."""
    result = config_dict.copy()
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            section_values = dict(result.get(section) or {})
            section_values[key] = value
            result[section] = section_values
    return result


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge on top

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def generate_default_config(output_path: Path) -> None:
    """
    Generate a default configuration file.

    Args:
        output_path: Path to write the configuration file
    """
    config_dict = get_default_config()

    yaml_content = """# Expense Ledger Sync Configuration
# Generated configuration file - customize as needed
# Credentials are read from the environment:
#   BILL_API_TOKEN, BILL_BASE_URL, NETSUITE_*, SUPABASE_URL,
#   SUPABASE_SERVICE_ROLE_KEY, SLACK_WEBHOOK_URL, SLACK_API_TOKEN, CRON_SECRET

"""
    yaml_content += yaml.dump(config_dict, default_flow_style=False, sort_keys=False)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        f.write(yaml_content)

    logger.info(f"Generated configuration file: {output_path}")
