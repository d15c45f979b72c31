"""
Per-run reference data: user display names, custom field ids and
branch name normalization.
"""

from dataclasses import dataclass, field
from typing import Any, Optional
import logging

from .config import CustomFieldNames, ReconciliationConfig
from .models.records import ExternalRecord, FieldSet
from .utils.exceptions import LedgerSyncError

logger = logging.getLogger(__name__)


@dataclass
class CustomFieldIds:
    """Resolved custom field definition ids; None when a field is not configured upstream."""

    branch: Optional[str] = None
    department: Optional[str] = None
    category: Optional[str] = None


@dataclass
class ReferenceResolver:
    """
    Reference data loaded once per run.

    Attributes:
        user_names: Card platform user id -> display name
        field_ids: Ids of the custom fields that feed ledger columns
        unknown_user: Display name used when a user id is not in the map
    """

    user_names: dict[str, str] = field(default_factory=dict)
    field_ids: CustomFieldIds = field(default_factory=CustomFieldIds)
    unknown_user: str = "Unknown User"

    @classmethod
    def from_card_client(
        cls, client: Any, field_names: CustomFieldNames, unknown_user: str = "Unknown User"
    ) -> "ReferenceResolver":
        """
        Load users and custom field definitions from the card platform.

        A failed user lookup propagates. A failed custom field lookup leaves
        the field ids unset and the run continues.

        Args:
            client: Card source client exposing ``list_users`` and ``list_custom_fields``
            field_names: Names of the branch/department/category fields
            unknown_user: Fallback display name

        Returns:
            Populated resolver
        """
        user_names = build_user_names(client.list_users(), unknown_user)
        logger.info(f"Loaded {len(user_names)} user mappings")

        try:
            definitions = client.list_custom_fields()
        except LedgerSyncError as e:
            logger.error(f"Error fetching custom fields: {e}")
            definitions = []

        field_ids = CustomFieldIds(
            branch=find_field_id(definitions, field_names.branch),
            department=find_field_id(definitions, field_names.department),
            category=find_field_id(definitions, field_names.category),
        )
        for label, value in (
            (field_names.branch, field_ids.branch),
            (field_names.department, field_ids.department),
            (field_names.category, field_ids.category),
        ):
            if value:
                logger.info(f"{label} field found: {value}")
            else:
                logger.info(f"{label} custom field not found")

        return cls(user_names=user_names, field_ids=field_ids, unknown_user=unknown_user)

    def cardholder(self, user_id: Optional[str]) -> str:
        if user_id and user_id in self.user_names:
            return self.user_names[user_id]
        return self.unknown_user

    def index_fields(self, record: ExternalRecord) -> FieldSet:
        """
        Resolve branch, department, category and memo in one pass.

        Memo is the first custom field carrying a non-blank note, whichever
        field that is.
        """
        wanted = {
            self.field_ids.branch: "branch",
            self.field_ids.department: "department",
            self.field_ids.category: "category",
        }
        wanted.pop(None, None)

        fields = FieldSet()
        for custom_field in record.custom_fields:
            if fields.memo is None and custom_field.note and custom_field.note.strip():
                fields.memo = custom_field.note

            for field_id in custom_field.field_ids:
                attr = wanted.get(field_id)
                if attr and getattr(fields, attr) is None:
                    setattr(fields, attr, custom_field.value)

        return fields


def build_user_names(users: list[dict[str, Any]], unknown_user: str) -> dict[str, str]:
    names: dict[str, str] = {}
    for user in users:
        if not user.get("id"):
            continue
        full_name = " ".join(p for p in (user.get("firstName"), user.get("lastName")) if p)
        names[str(user["id"])] = full_name or unknown_user
    return names


def find_field_id(definitions: list[dict[str, Any]], name: str) -> Optional[str]:
    """Id of the active custom field definition with ``name``."""
    for definition in definitions:
        if definition.get("name") == name and not definition.get("retired"):
            return definition.get("uuid") or definition.get("id")
    return None


class BranchNormalizer:
    """
    Maps card platform branch labels onto the ERP's location names.

    Exact aliases are checked first, then prefix rewrites; anything else
    passes through unchanged.
    """

    def __init__(
        self,
        aliases: dict[str, str],
        prefix_rewrites: dict[str, str],
        token_max_length: int = 50,
        token_rejected_chars: Optional[list[str]] = None,
    ):
        self.aliases = dict(aliases)
        self.prefix_rewrites = dict(prefix_rewrites)
        self.token_max_length = token_max_length
        self.token_rejected_chars = list(token_rejected_chars or [])

    @classmethod
    def from_config(cls, config: ReconciliationConfig) -> "BranchNormalizer":
        return cls(
            aliases=config.branch_aliases,
            prefix_rewrites=config.branch_prefix_rewrites,
            token_max_length=config.branch_token_max_length,
            token_rejected_chars=config.branch_token_rejected_chars,
        )

    def normalize(self, name: Optional[str]) -> Optional[str]:
        if not name:
            return None
        if name in self.aliases:
            return self.aliases[name]
        for prefix, replacement in self.prefix_rewrites.items():
            if name.startswith(prefix):
                return replacement + name[len(prefix):]
        return name

    def is_plausible_branch(self, value: Optional[str]) -> bool:
        """
        Whether a budget id looks like a human branch label.

        Opaque encoded tokens contain ``=`` or ``-`` or run long.
        """
        if not value:
            return False
        if any(ch in value for ch in self.token_rejected_chars):
            return False
        return len(value) < self.token_max_length
