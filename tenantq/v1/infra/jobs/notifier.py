"""
Completion notifications for long-running jobs.

Notifiers are best-effort: the queue logs and drops anything they raise.
"""

import logging
from typing import Protocol

import httpx

from tenantq.config.settings import Settings
from tenantq.v1.infra.jobs.schemas import JobSummary, TenantRecord

logger = logging.getLogger(__name__)


class CompletionNotifier(Protocol):
    """Tells a tenant their long job has finished."""

    async def notify(self, tenant: TenantRecord, summary: JobSummary) -> None:
        ...


def format_duration(seconds: float) -> str:
    minutes, secs = divmod(round(seconds), 60)
    return f"{minutes}m {secs}s" if minutes else f"{secs}s"


class LogCompletionNotifier:
    """Writes the summary to the log. Used when no webhook is configured."""

    async def notify(self, tenant: TenantRecord, summary: JobSummary) -> None:
        logger.info(
            "Job completed notification",
            extra={
                "tenant_id": tenant.tenant_id,
                "job_id": summary.job_id,
                "job_type": summary.job_type,
                "successful": summary.successful,
                "failed": summary.failed,
                "skipped": summary.skipped,
                "duration": format_duration(summary.duration_seconds),
            },
        )


class WebhookCompletionNotifier:
    """POSTs the summary to a mail/notification service.

    Tenants without an email address are skipped; there is nobody to tell.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def notify(self, tenant: TenantRecord, summary: JobSummary) -> None:
        if not tenant.email:
            logger.info(
                "Skipping completion notification, tenant has no email",
                extra={"tenant_id": tenant.tenant_id, "job_id": summary.job_id},
            )
            return

        status_text = (
            "completed with some issues" if summary.failed else "completed successfully"
        )
        payload = {
            "to": tenant.email,
            "tenant_id": tenant.tenant_id,
            "tenant_name": tenant.name or tenant.tenant_id,
            "subject": f"{summary.display_name} {status_text}",
            "duration": format_duration(summary.duration_seconds),
            "summary": summary.model_dump(mode="json"),
        }

        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport
        ) as client:
            response = await client.post(self.url, json=payload)
            response.raise_for_status()

        logger.info(
            "Completion notification sent",
            extra={
                "tenant_id": tenant.tenant_id,
                "job_id": summary.job_id,
                "status_code": response.status_code,
            },
        )


def build_notifier(settings: Settings) -> CompletionNotifier:
    """Webhook notifier when a URL is configured, log notifier otherwise."""
    if settings.notifier_webhook_url:
        return WebhookCompletionNotifier(
            settings.notifier_webhook_url, timeout=settings.notifier_timeout_seconds
        )
    return LogCompletionNotifier()
