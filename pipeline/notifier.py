"""
Final sync report delivery.

The pipeline hands a notifier the terminal SyncRun and the last batch
snapshot exactly once per run. Notifiers own formatting and delivery; the
pipeline swallows any NotificationFailure they raise.
"""

import asyncio
import html
import logging
from typing import List, Optional, Tuple

import resend

from core.config import settings
from core.exceptions import NotificationFailure
from models.base import SyncStatus
from models.sync_run import SyncRun
from schemas.sync import BatchSnapshot

logger = logging.getLogger(__name__)


class SyncNotifier:
    """Base notifier: decides whether a run is reportable."""

    def __init__(self, send_on_success: bool = True, send_on_failure: bool = True):
        self.send_on_success = send_on_success
        self.send_on_failure = send_on_failure

    def should_send(self, run: SyncRun) -> bool:
        if run.status == SyncStatus.FAILED:
            return self.send_on_failure
        return self.send_on_success

    async def notify(self, run: SyncRun, snapshot: Optional[BatchSnapshot] = None) -> None:
        if not self.should_send(run):
            logger.debug(f"Notification for run {run.id} ({run.status.value}) disabled")
            return
        await self.deliver(run, snapshot)

    async def deliver(self, run: SyncRun, snapshot: Optional[BatchSnapshot]) -> None:
        raise NotImplementedError


class LogNotifier(SyncNotifier):
    """Writes the report to the application log."""

    async def deliver(self, run: SyncRun, snapshot: Optional[BatchSnapshot]) -> None:
        lines = "; ".join(f"{label}: {value}" for label, value in report_rows(run, snapshot))
        if run.status == SyncStatus.FAILED:
            logger.error(f"{build_subject(run)} | {lines}")
        else:
            logger.info(f"{build_subject(run)} | {lines}")


class EmailNotifier(SyncNotifier):
    """Sends the report to the administrator through the Resend API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        to_address: Optional[str] = None,
        from_address: Optional[str] = None,
        admin_name: Optional[str] = None,
        subject_prefix: Optional[str] = None,
        send_on_success: bool = True,
        send_on_failure: bool = True
    ):
        super().__init__(send_on_success, send_on_failure)
        self._api_key = api_key or settings.RESEND_API_KEY
        self.to_address = to_address or settings.ADMIN_EMAIL
        self.from_address = from_address or settings.MAIL_FROM
        self.admin_name = admin_name or settings.ADMIN_NAME
        self.subject_prefix = subject_prefix if subject_prefix is not None else settings.EMAIL_SUBJECT_PREFIX

        if not self._api_key:
            raise ValueError("Resend API key required. Set RESEND_API_KEY or pass api_key.")

    async def deliver(self, run: SyncRun, snapshot: Optional[BatchSnapshot]) -> None:
        params = {
            "from": self.from_address,
            "to": [self.to_address],
            "subject": f"{self.subject_prefix} {build_subject(run)}".strip(),
            "html": self.render_html(run, snapshot),
            "text": self.render_text(run, snapshot),
        }

        try:
            resend.api_key = self._api_key
            response = await asyncio.to_thread(resend.Emails.send, params)
        except Exception as e:
            raise NotificationFailure(
                "Failed to send sync report email",
                context={"run_id": run.id, "to": self.to_address},
                original_exception=e
            )

        message_id = response.get("id") if isinstance(response, dict) else None
        logger.info(f"Sync report for run {run.id} sent to {self.to_address} (message {message_id})")

    def render_text(self, run: SyncRun, snapshot: Optional[BatchSnapshot]) -> str:
        rows = "\n".join(f"{label}: {value}" for label, value in report_rows(run, snapshot))
        return f"Hello {self.admin_name},\n\n{build_subject(run)}\n\n{rows}\n"

    def render_html(self, run: SyncRun, snapshot: Optional[BatchSnapshot]) -> str:
        rows = "".join(
            f"<tr><th align='left'>{html.escape(label)}</th><td>{html.escape(str(value))}</td></tr>"
            for label, value in report_rows(run, snapshot)
        )
        return (
            f"<p>Hello {html.escape(self.admin_name)},</p>"
            f"<h2>{html.escape(build_subject(run))}</h2>"
            f"<table>{rows}</table>"
        )


def build_subject(run: SyncRun) -> str:
    label = run.sync_type.replace("_", " ").capitalize()
    outcome = "Failed" if run.status == SyncStatus.FAILED else "Completed"
    return f"{label} {outcome} - {run.total_products_fetched or 0} Products"


def report_rows(run: SyncRun, snapshot: Optional[BatchSnapshot]) -> List[Tuple[str, object]]:
    rows = [
        ("Run", run.id),
        ("Status", run.status.value),
        ("Products fetched", run.total_products_fetched),
        ("Created", run.products_created),
        ("Updated", run.products_updated),
        ("Skipped", run.products_skipped),
        ("Failed", run.products_failed),
        ("Batches", run.total_batches),
        ("Duration", run.duration_formatted),
        ("Success rate", f"{run.success_rate}%"),
    ]
    if run.error_message:
        rows.append(("Error", run.error_message))
    if snapshot is not None:
        rows.extend([
            ("Batch", snapshot.batch_id),
            ("Batch progress", f"{snapshot.progress}%"),
            ("Failed jobs", snapshot.failed_jobs),
            ("Cancelled", "yes" if snapshot.cancelled else "no"),
        ])
    return rows


def build_notifier() -> SyncNotifier:
    """Notifier selected by configuration."""
    if settings.ENABLE_SYNC_EMAILS and settings.RESEND_API_KEY:
        return EmailNotifier(
            send_on_success=settings.SEND_ON_SUCCESS,
            send_on_failure=settings.SEND_ON_FAILURE
        )
    if settings.ENABLE_SYNC_EMAILS:
        logger.warning("ENABLE_SYNC_EMAILS is set but RESEND_API_KEY is missing; reports go to the log")
    return LogNotifier(
        send_on_success=settings.SEND_ON_SUCCESS,
        send_on_failure=settings.SEND_ON_FAILURE
    )
