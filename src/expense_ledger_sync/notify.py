"""
Slack notifications.
Correction requests to purchasers, monthly department summaries and
post-run sync summaries. Sending never touches the ledger.
"""

from dataclasses import dataclass
from typing import Any, Optional
import logging

import httpx

from .config import SlackConfig
from .models.sync_run import SyncRunStatus, SyncSummary
from .reports.department_summary import DepartmentSummary, month_display

logger = logging.getLogger(__name__)

DEPARTMENT_EMOJI = [
    (("arbor",), ":palm_tree:"),
    (("enhancement",), ":enh:"),
    (("maintenance",), ":agave:"),
    (("irrigation",), ":droplet:"),
    (("spray", "phc"), ":pesticide:"),
    (("safety",), ":safety_vest:"),
    (("fleet", "equipment"), ":truck:"),
    (("office", "operations"), ":office:"),
]


@dataclass
class NotificationResult:
    """Outcome of one send attempt."""

    success: bool
    channel: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "channel": self.channel,
            "messageId": self.message_id,
            "error": self.error,
        }


@dataclass
class CorrectionRequest:
    """A reviewer's correction to the coding of one ledger record."""

    record_id: str
    recipient: str  # Slack user or channel id
    purchaser_name: str
    vendor: str
    amount: float
    date: str
    incorrect_branch: Optional[str] = None
    correct_branch: Optional[str] = None
    incorrect_department: Optional[str] = None
    correct_department: Optional[str] = None
    incorrect_category: Optional[str] = None
    correct_category: Optional[str] = None
    memo: Optional[str] = None
    bill_url: Optional[str] = None


def correction_lines(request: CorrectionRequest) -> list[str]:
    lines = []
    for label, wrong, right in (
        ("Branch", request.incorrect_branch, request.correct_branch),
        ("Department", request.incorrect_department, request.correct_department),
        ("Category", request.incorrect_category, request.correct_category),
    ):
        if right and wrong != right:
            lines.append(f"• *{label}:* {wrong or 'Not set'} → {right}")
    return lines


def build_correction_message(request: CorrectionRequest) -> Optional[dict[str, Any]]:
    """
    Build the chat.postMessage payload for a correction request.

    Returns:
        Message payload, or None when no field actually changed
    """
    changes = correction_lines(request)
    if not changes:
        return None

    info = f"*Vendor:* {request.vendor}  |  *Amount:* ${request.amount:.2f}  |  *Date:* {request.date}"
    if request.bill_url:
        info += f"  |  <{request.bill_url}|View Transaction>"

    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": "Expense Entry Correction Needed", "emoji": True},
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"Hey {request.purchaser_name}! One of your credit card transactions needs attention.",
            },
        },
        {"type": "divider"},
        {"type": "section", "text": {"type": "mrkdwn", "text": info}},
    ]
    if request.memo:
        blocks.append(
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*Description:* {request.memo}"}}
        )
    blocks.append(
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": "*Please update:*\n" + "\n".join(changes)},
        }
    )

    return {
        "channel": request.recipient,
        "text": f"Expense correction needed for {request.vendor}",
        "blocks": blocks,
    }


def resolve_department_channel(
    channels: dict[str, dict[str, str]], branch: str, department: str
) -> Optional[str]:
    """
    Find the channel for a branch/department.

    Exact department names win. Any maintenance variant maps to the
    branch's first maintenance channel; other departments fall back to a
    substring match in either direction.
    """
    branch_channels = channels.get(branch)
    if not branch_channels:
        return None

    if department in branch_channels:
        return branch_channels[department]

    if "maintenance" in department.lower():
        for key, channel in branch_channels.items():
            if "maintenance" in key.lower():
                return channel
        return None

    for key, channel in branch_channels.items():
        if key in department or department in key:
            return channel
    return None


def clean_department_name(department: str) -> str:
    if department.startswith("Maintenance : Maintenance"):
        return department.replace("Maintenance : ", "", 1)
    return department


def department_emoji(department: str) -> str:
    lower = department.lower()
    for keywords, emoji in DEPARTMENT_EMOJI:
        if any(k in lower for k in keywords):
            return emoji
    return ":clipboard:"


def build_department_summary_message(
    summary: DepartmentSummary, channel: str, dashboard_url: str = ""
) -> dict[str, Any]:
    department = clean_department_name(summary.department)
    period = month_display(summary.month)
    month_emoji = f":{period[:3].lower()}:"

    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"Expense Summary: {summary.branch}", "emoji": True},
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"{department_emoji(summary.department)} *Department:* {department}\n"
                    f"{month_emoji} *Period:* {period}"
                ),
            },
        },
        {"type": "divider"},
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Total Expenses*\n*${summary.total_amount:,.0f}*"},
                {"type": "mrkdwn", "text": f"*Transactions*\n*{summary.total_count}*"},
            ],
        },
    ]

    if summary.unapproved_count > 0:
        blocks.append({"type": "divider"})
        blocks.append(
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Unapproved*\n*${summary.unapproved_amount:,.0f}*"},
                    {
                        "type": "mrkdwn",
                        "text": f"*Pending Review*\n*{summary.unapproved_count}* transactions",
                    },
                ],
            }
        )
    else:
        blocks.append(
            {
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": "All transactions have been approved!"}],
            }
        )

    if dashboard_url:
        blocks.append({"type": "divider"})
        blocks.append(
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"<{dashboard_url}|View in Expense Dashboard>"},
            }
        )

    return {
        "channel": channel,
        "text": f"Expense Summary for {summary.branch} - {department} ({period})",
        "blocks": blocks,
    }


def build_sync_summary_message(summary: SyncSummary) -> dict[str, Any]:
    run = summary.run
    icon = {
        SyncRunStatus.SUCCESS: ":white_check_mark:",
        SyncRunStatus.PARTIAL: ":warning:",
        SyncRunStatus.FAILED: ":x:",
    }.get(run.status, ":information_source:")

    text = (
        f"{icon} {run.kind.value.replace('_', ' ').title()} sync {run.status.value}: "
        f"{run.records_fetched} fetched, {summary.message}"
    )
    return {"text": text}


class SlackNotifier:
    """
    Sends messages through the Web API when a token is configured,
    otherwise through the incoming webhook.
    """

    def __init__(self, config: SlackConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self._client = client or httpx.Client(timeout=config.timeout_seconds)

    @property
    def enabled(self) -> bool:
        return bool(self.config.api_token or self.config.webhook_url)

    def send(self, message: dict[str, Any]) -> NotificationResult:
        """
        Post a message.

        Messages with a ``channel`` require the Web API token; channel-less
        messages go to the webhook when one is set.
        """
        channel = message.get("channel")
        try:
            if self.config.api_token and (channel or not self.config.webhook_url):
                return self._post_message(message)
            if self.config.webhook_url and not channel:
                return self._post_webhook(message)
        except httpx.HTTPError as e:
            logger.warning(f"Failed to connect to Slack: {e}")
            return NotificationResult(success=False, channel=channel, error=str(e))

        error = "Slack API token not configured" if channel else "Slack is not configured"
        logger.warning(error)
        return NotificationResult(success=False, channel=channel, error=error)

    def _post_message(self, message: dict[str, Any]) -> NotificationResult:
        response = self._client.post(
            f"{self.config.api_base_url.rstrip('/')}/chat.postMessage",
            headers={
                "Authorization": f"Bearer {self.config.api_token}",
                "Content-Type": "application/json",
            },
            json=message,
            timeout=self.config.timeout_seconds,
        )
        if not response.is_success:
            return NotificationResult(
                success=False,
                channel=message.get("channel"),
                error=f"Slack API request failed: {response.status_code}",
            )

        try:
            data = response.json()
        except ValueError:
            logger.warning(f"Slack API returned a non-JSON body: {response.text[:200]}")
            return NotificationResult(
                success=False,
                channel=message.get("channel"),
                error="Slack API returned an invalid response",
            )
        if not data.get("ok"):
            logger.warning(f"Slack API error: {data.get('error')}")
            return NotificationResult(
                success=False,
                channel=message.get("channel"),
                error=f"Slack API error: {data.get('error') or 'Unknown error'}",
            )

        logger.info(f"Slack message sent to {data.get('channel')} ({data.get('ts')})")
        return NotificationResult(success=True, channel=data.get("channel"), message_id=data.get("ts"))

    def _post_webhook(self, message: dict[str, Any]) -> NotificationResult:
        response = self._client.post(
            self.config.webhook_url, json=message, timeout=self.config.timeout_seconds
        )
        if not response.is_success:
            return NotificationResult(
                success=False, error=f"Slack webhook failed: {response.status_code} - {response.text}"
            )
        return NotificationResult(success=True)

    def notify_correction(self, request: CorrectionRequest) -> NotificationResult:
        message = build_correction_message(request)
        if message is None:
            return NotificationResult(success=False, error="No changes to notify about")
        return self.send(message)

    def notify_department_summary(self, summary: DepartmentSummary) -> NotificationResult:
        channel = resolve_department_channel(
            self.config.department_channels, summary.branch, summary.department
        )
        if channel is None:
            return NotificationResult(
                success=False,
                error=f"No Slack channel configured for {summary.department} in {summary.branch}",
            )
        message = build_department_summary_message(summary, channel, self.config.dashboard_url)
        return self.send(message)

    def notify_sync_summary(self, summary: SyncSummary) -> NotificationResult:
        return self.send(build_sync_summary_message(summary))

    def close(self) -> None:
        self._client.close()
