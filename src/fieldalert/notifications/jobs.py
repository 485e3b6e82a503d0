"""Job-layer notifications: assignment and status changes, rendered from templates."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from fieldalert.core.errors import FieldAlertError
from fieldalert.core.types import BlockReason, Priority, RecipientRole
from fieldalert.notifications.models import (
    ChannelOutcome,
    NotificationContent,
    NotificationRequest,
)
from fieldalert.notifications.service import NotificationService

logger = logging.getLogger(__name__)

_DEFAULT_TEMPLATES_PATH = Path(__file__).resolve().parents[3] / "config" / "notification_templates.yml"

JOB_ASSIGNED = "job.assigned"
JOB_STATUS_UPDATED = "job.status_updated"
SOURCE = "job_service"
STATUS_RECIPIENT_ROLES = [RecipientRole.ADMIN, RecipientRole.MANAGER]


class JobNotificationData(BaseModel):
    job_id: str
    title: str
    description: str = ""
    job_type: str = ""
    priority: Priority = Priority.NORMAL
    property_name: str = ""
    property_address: str = ""
    scheduled_date: datetime | None = None
    assigned_staff_id: str | None = None
    assigned_staff_name: str | None = None
    status: str | None = None
    previous_status: str | None = None
    completion_notes: str | None = None


class JobNotificationResult(BaseModel):
    """Aggregated outcome of one job notification across its recipients."""

    success: bool = False
    event_ids: list[str] = Field(default_factory=list)
    recipient_count: int = 0
    channel_results: dict[str, ChannelOutcome] = Field(default_factory=dict)
    duplicates_blocked: int = 0
    rate_limited: int = 0
    errors: list[str] = Field(default_factory=list)


class _Template(BaseModel):
    title: str = ""
    body: str = ""


class JobNotificationService:
    """Turns job lifecycle events into notification requests.

    Assignments go to the assigned staff member. Status changes fan out to
    every admin and manager in the directory.
    """

    def __init__(
        self,
        service: NotificationService,
        templates_path: str | Path | None = None,
    ) -> None:
        self._service = service
        self._templates: dict[str, _Template] = {}
        self._load_templates(Path(templates_path) if templates_path else _DEFAULT_TEMPLATES_PATH)

    def _load_templates(self, path: Path) -> None:
        if not path.exists():
            logger.warning("Notification templates not found at %s", path)
            return
        with open(path) as fh:
            data = yaml.safe_load(fh) or {}
        for tmpl_id, tmpl_data in data.get("templates", {}).items():
            self._templates[tmpl_id] = _Template(
                title=tmpl_data.get("title", ""),
                body=tmpl_data.get("body", ""),
            )

    @property
    def templates(self) -> dict[str, _Template]:
        return dict(self._templates)

    async def notify_job_assigned(self, job: JobNotificationData) -> JobNotificationResult:
        result = JobNotificationResult()
        if not job.assigned_staff_id:
            result.errors.append(f"Job {job.job_id} has no assigned staff member")
            return result

        request = NotificationRequest(
            event_type=JOB_ASSIGNED,
            entity_id=job.job_id,
            recipient_id=job.assigned_staff_id,
            content=self.render("job_assigned", job, self._job_data(job)),
            source=SOURCE,
            priority=job.priority,
            metadata={"job_type": job.job_type, "property_name": job.property_name},
        )
        await self._notify(request, result)
        result.success = self._succeeded(result)
        return result

    async def notify_job_status_changed(self, job: JobNotificationData) -> JobNotificationResult:
        result = JobNotificationResult()
        recipients = await self._service.directory.list_recipients(STATUS_RECIPIENT_ROLES)
        if not recipients:
            result.errors.append("No admin or manager recipients found")
            return result

        template_id = f"job_status_{job.status}"
        if template_id not in self._templates:
            template_id = "job_status_default"
        data = {
            **self._job_data(job),
            "status": job.status,
            "previous_status": job.previous_status,
            "assigned_staff_name": job.assigned_staff_name,
            "completion_notes": job.completion_notes,
        }
        content = self.render(template_id, job, data)

        for profile in recipients:
            if not profile.wants(JOB_STATUS_UPDATED, job.priority):
                logger.debug("Skipping %s: job status updates disabled", profile.recipient_id)
                continue
            request = NotificationRequest(
                event_type=JOB_STATUS_UPDATED,
                entity_id=job.job_id,
                recipient_id=profile.recipient_id,
                content=content,
                source=SOURCE,
                priority=job.priority,
                metadata={
                    "status_change": f"{job.previous_status} -> {job.status}",
                    "job_type": job.job_type,
                },
            )
            await self._notify(request, result)

        result.success = self._succeeded(result)
        logger.info(
            "Job %s status %s notified: %d recipients, %d events, %d duplicates blocked",
            job.job_id,
            job.status,
            result.recipient_count,
            len(result.event_ids),
            result.duplicates_blocked,
        )
        return result

    async def _notify(self, request: NotificationRequest, result: JobNotificationResult) -> None:
        result.recipient_count += 1
        try:
            outcome = await self._service.notify(request)
        except FieldAlertError as exc:
            result.errors.append(str(exc))
            return

        decision = outcome.decision
        if not decision.allowed:
            if decision.block_reason is BlockReason.RATE_LIMITED:
                result.rate_limited += 1
            else:
                result.duplicates_blocked += 1
            return

        result.event_ids.append(decision.event.id)
        if outcome.delivery is None:
            return
        for name, counts in outcome.delivery.per_channel.items():
            total = result.channel_results.setdefault(name, ChannelOutcome())
            total.success += counts.success
            total.failed += counts.failed
            total.skipped += counts.skipped
        result.errors.extend(outcome.delivery.errors)

    @staticmethod
    def _succeeded(result: JobNotificationResult) -> bool:
        delivered = any(c.success for c in result.channel_results.values())
        return delivered or (result.duplicates_blocked > 0 and not result.rate_limited)

    @staticmethod
    def _job_data(job: JobNotificationData) -> dict[str, Any]:
        return {
            "job_id": job.job_id,
            "job_title": job.title,
            "job_type": job.job_type,
            "priority": job.priority.value,
            "property_name": job.property_name,
            "property_address": job.property_address,
            "scheduled_date": job.scheduled_date.isoformat() if job.scheduled_date else None,
            "assigned_staff_id": job.assigned_staff_id,
            "deep_link": f"app://jobs/{job.job_id}",
        }

    def render(
        self, template_id: str, job: JobNotificationData, data: dict[str, Any] | None = None
    ) -> NotificationContent:
        context = {
            "title": job.title,
            "job_type": job.job_type.replace("_", " "),
            "property_name": job.property_name,
            "property_address": job.property_address,
            "staff_name": job.assigned_staff_name or "Staff member",
            "status": job.status or "",
            "previous_status": job.previous_status or "",
            "completion_notes": job.completion_notes or "",
        }
        template = self._templates.get(template_id)
        if template:
            title = self._render(template.title, context)
            body = self._render(template.body, context)
        else:
            title = template_id.replace("_", " ").title()
            body = f"{job.title}: {template_id}"
        return NotificationContent(title=title, body=body, data=data or {})

    @staticmethod
    def _render(template_str: str, context: dict[str, Any]) -> str:
        """Single-pass ``{key}`` substitution; unknown placeholders are preserved."""
        str_context = {k: str(v) for k, v in context.items()}

        def _replace(m: re.Match) -> str:
            return str_context.get(m.group(1), m.group(0))

        return re.sub(r"\{(\w+)\}", _replace, template_str)
