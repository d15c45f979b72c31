"""
HTTP trigger surface.
Scheduled cron triggers, manual sync triggers, the triage endpoints and
the Slack notification endpoints.
"""

from datetime import date
from typing import Any, Callable, Optional
import logging

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import SyncConfig
from .notify import (
    CorrectionRequest,
    NotificationResult,
    SlackNotifier,
    correction_lines,
    resolve_department_channel,
)
from .pipeline import SyncService
from .reports.department_summary import DepartmentSummary
from .utils.exceptions import LedgerSyncError, SyncAbortedError, ValidationError

logger = logging.getLogger(__name__)


class FlagUpdate(BaseModel):
    expenseId: str
    flagCategory: Optional[str] = None


class ApprovalUpdate(BaseModel):
    expenseId: str
    approvalStatus: Optional[str] = None
    modifiedBy: Optional[str] = None


class BillSyncRequest(BaseModel):
    fromDate: Optional[date] = None


class CardSyncRequest(BaseModel):
    daysBack: Optional[int] = None
    includeIncomplete: bool = True


class CorrectionNotify(BaseModel):
    expenseId: str
    slackId: str
    purchaserName: str
    vendor: str
    amount: float
    date: str
    incorrectBranch: Optional[str] = None
    correctBranch: Optional[str] = None
    incorrectDepartment: Optional[str] = None
    correctDepartment: Optional[str] = None
    incorrectCategory: Optional[str] = None
    correctCategory: Optional[str] = None
    memo: Optional[str] = None
    billUrl: Optional[str] = None


class DepartmentSummaryNotify(BaseModel):
    branch: str
    department: str
    month: str
    totalAmount: float
    totalCount: int
    unapprovedAmount: float = 0.0
    unapprovedCount: int = 0
    flaggedCount: int = 0


def _notification_response(result: NotificationResult) -> JSONResponse:
    return JSONResponse(status_code=200 if result.success else 500, content=result.to_dict())


def create_app(
    config: SyncConfig,
    service_factory: Callable[[], SyncService],
    notifier_factory: Optional[Callable[[], SlackNotifier]] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Loaded configuration
        service_factory: Returns the SyncService used by each request
        notifier_factory: Returns the SlackNotifier used by the notify routes

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(title="Expense Ledger Sync")
    build_notifier = notifier_factory or (lambda: SlackNotifier(config.slack))

    def require_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
        secret = config.api.cron_secret
        if secret and authorization != f"Bearer {secret}":
            logger.error("Unauthorized request - invalid secret")
            raise HTTPException(status_code=401, detail="Unauthorized")

    def get_service() -> SyncService:
        return service_factory()

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.detail})

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})

    @app.exception_handler(SyncAbortedError)
    async def sync_aborted(request: Request, exc: SyncAbortedError) -> JSONResponse:
        content: dict[str, Any] = {"success": False, "error": str(exc)}
        if exc.run is not None:
            content["runId"] = exc.run.id
            content["status"] = exc.run.status.value
        return JSONResponse(status_code=500, content=content)

    @app.exception_handler(LedgerSyncError)
    async def ledger_sync_error(request: Request, exc: LedgerSyncError) -> JSONResponse:
        logger.error(f"Request failed: {exc}")
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})

    guarded = [Depends(require_cron_secret)]

    def _sync_response(summary) -> dict[str, Any]:
        body = summary.to_dict()
        body["message"] = summary.message
        return body

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/cron/sync-credit-cards", dependencies=guarded)
    def cron_sync_credit_cards(service: SyncService = Depends(get_service)) -> dict[str, Any]:
        logger.info("=== CRON: Starting Automated Credit Card Sync ===")
        summary = service.sync_credit_cards(days_back=config.reconciliation.cron_days_back)
        return _sync_response(summary)

    @app.get("/api/cron/sync-bills", dependencies=guarded)
    def cron_sync_bills(service: SyncService = Depends(get_service)) -> dict[str, Any]:
        logger.info("=== CRON: Starting Automated Vendor Bill Sync ===")
        return _sync_response(service.sync_vendor_bills())

    @app.post("/api/sync/credit-cards", dependencies=guarded)
    def sync_credit_cards(
        body: Optional[CardSyncRequest] = None,
        service: SyncService = Depends(get_service),
    ) -> dict[str, Any]:
        body = body or CardSyncRequest()
        summary = service.sync_credit_cards(
            days_back=body.daysBack, include_incomplete=body.includeIncomplete
        )
        return _sync_response(summary)

    @app.post("/api/sync/credit-cards/historical", dependencies=guarded)
    def sync_credit_cards_historical(service: SyncService = Depends(get_service)) -> dict[str, Any]:
        return _sync_response(service.sync_credit_cards(historical=True))

    @app.post("/api/sync/bills", dependencies=guarded)
    def sync_bills(
        body: Optional[BillSyncRequest] = None,
        service: SyncService = Depends(get_service),
    ) -> dict[str, Any]:
        from_date = body.fromDate if body else None
        return _sync_response(service.sync_vendor_bills(from_date))

    @app.get("/api/sync/last-sync", dependencies=guarded)
    def last_sync(service: SyncService = Depends(get_service)) -> dict[str, Any]:
        return {"success": True, "lastSyncTime": service.last_successful_sync()}

    @app.patch("/api/expenses/flag", dependencies=guarded)
    def update_flag(body: FlagUpdate, service: SyncService = Depends(get_service)) -> dict[str, Any]:
        data = service.set_flag(body.expenseId, body.flagCategory)
        return {"success": True, "data": data}

    @app.patch("/api/expenses/approval", dependencies=guarded)
    def update_approval(
        body: ApprovalUpdate, service: SyncService = Depends(get_service)
    ) -> dict[str, Any]:
        data = service.set_approval(body.expenseId, body.approvalStatus, body.modifiedBy)
        return {"success": True, "data": data}

    @app.post("/api/notify/slack", dependencies=guarded)
    def notify_correction(body: CorrectionNotify) -> JSONResponse:
        request = CorrectionRequest(
            record_id=body.expenseId,
            recipient=body.slackId,
            purchaser_name=body.purchaserName,
            vendor=body.vendor,
            amount=body.amount,
            date=body.date,
            incorrect_branch=body.incorrectBranch,
            correct_branch=body.correctBranch,
            incorrect_department=body.incorrectDepartment,
            correct_department=body.correctDepartment,
            incorrect_category=body.incorrectCategory,
            correct_category=body.correctCategory,
            memo=body.memo,
            bill_url=body.billUrl,
        )
        if not correction_lines(request):
            raise ValidationError("No changes to notify about")

        logger.info(f"Sending correction for {body.expenseId} to {body.slackId}")
        return _notification_response(build_notifier().notify_correction(request))

    @app.post("/api/notify/slack-department-summary", dependencies=guarded)
    def notify_department_summary(body: DepartmentSummaryNotify) -> JSONResponse:
        summary = DepartmentSummary(
            branch=body.branch,
            department=body.department,
            month=body.month,
            total_amount=body.totalAmount,
            total_count=body.totalCount,
            unapproved_amount=body.unapprovedAmount,
            unapproved_count=body.unapprovedCount,
            flagged_count=body.flaggedCount,
        )
        notifier = build_notifier()
        channel = resolve_department_channel(
            notifier.config.department_channels, body.branch, body.department
        )
        if channel is None:
            error = f"No Slack channel configured for {body.department} in {body.branch}"
            return JSONResponse(status_code=404, content={"success": False, "error": error})
        return _notification_response(notifier.notify_department_summary(summary))

    return app
