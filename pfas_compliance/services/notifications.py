"""
Notification collaborators: SCIP drafts, risk alerts, user alerts and email.

Every record created here is idempotent by its natural key (check, then
create) except user notifications and emails, which the orchestrator only
emits for non-compliant verdicts. Email delivery is fire-and-forget from the
pipeline's point of view: the sender raises EmailDeliveryError, the
orchestrator records it in the pipeline report and moves on.
"""

from abc import ABC, abstractmethod

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pfas_compliance.core.config import settings
from pfas_compliance.core.context import RequestContext
from pfas_compliance.core.logging import get_logger
from pfas_compliance.db.enums import AlertStatus
from pfas_compliance.db.models import (
    ComplianceAssessment,
    Notification,
    RiskAlert,
    SCIPNotification,
    Substance,
)
from pfas_compliance.services.rule_engine import CompositionView

logger = get_logger(__name__)

NON_COMPLIANCE_ALERT_TYPE = "pfas_non_compliance"
SCIP_SAFE_USE_INFO = "Professional use only - avoid direct contact"


# =============================================================================
# Email
# =============================================================================


class EmailDeliveryError(Exception):
    """Raised when an email could not be delivered."""

    pass


class EmailSender(ABC):
    """Contract of the email collaborator."""

    @abstractmethod
    async def send(self, to: str, subject: str, body: str) -> None:
        pass


class LoggingEmailSender(EmailSender):
    """Used when no email gateway is configured: the message is only logged."""

    def __init__(self):
        self.sent: list[dict[str, str]] = []

    async def send(self, to: str, subject: str, body: str) -> None:
        self.sent.append({"to": to, "subject": subject, "body": body})
        logger.info("Email (not delivered, no gateway configured)", to=to, subject=subject)


class HTTPEmailSender(EmailSender):
    """POSTs messages to an HTTP email gateway."""

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        sender: str | None = None,
        timeout: float = 15.0,
    ):
        self.api_url = api_url or settings.email_api_url
        self.api_key = api_key or settings.email_api_key
        self.sender = sender or settings.email_sender
        self.timeout = timeout
        if not self.api_url:
            raise ValueError("Email gateway not configured. Set EMAIL_API_URL in .env")

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def send(self, to: str, subject: str, body: str) -> None:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.api_url,
                headers=headers,
                json={"from": self.sender, "to": to, "subject": subject, "body": body},
            )

        if response.status_code >= 400:
            logger.error("Email gateway error", status_code=response.status_code, response=response.text[:500])
            raise EmailDeliveryError(f"Email gateway returned status {response.status_code}")


def get_email_sender() -> EmailSender:
    """HTTP sender when a gateway is configured, else the logging sender."""
    if settings.email_api_url:
        return HTTPEmailSender()
    return LoggingEmailSender()


# =============================================================================
# Notification Service
# =============================================================================


class NotificationService:
    """
    Downstream records derived from a verdict.

    Usage:
        service = NotificationService(db, get_email_sender())
        created = await service.ensure_scip_notifications(ctx, assessment, compositions)
    """

    def __init__(self, session: AsyncSession, email_sender: EmailSender | None = None):
        self.session = session
        self.email_sender = email_sender or get_email_sender()

    async def svhc_substances(self, ctx: RequestContext, cas_numbers: list[str]) -> dict[str, Substance]:
        """Substances of Very High Concern among `cas_numbers`, by CAS."""
        if not cas_numbers:
            return {}
        rows = (
            await self.session.execute(
                select(Substance).where(
                    Substance.tenant_id == ctx.tenant_id,
                    Substance.cas_number.in_(cas_numbers),
                    Substance.svhc_status.is_(True),
                )
            )
        ).scalars().all()
        return {row.cas_number: row for row in rows}

    async def ensure_scip_notifications(
        self,
        ctx: RequestContext,
        assessment: ComplianceAssessment,
        compositions: list[CompositionView],
    ) -> int:
        """At most one SCIP draft per (object, SVHC substance). Returns how many were created."""
        cas_numbers = sorted({c.substance_cas for c in compositions if c.substance_cas})
        svhc = await self.svhc_substances(ctx, cas_numbers)
        if not svhc:
            return 0

        concentrations: dict[str, float] = {}
        for composition in compositions:
            if composition.substance_cas in svhc and composition.typical_concentration is not None:
                concentrations[composition.substance_cas] = max(
                    concentrations.get(composition.substance_cas, 0.0),
                    composition.typical_concentration,
                )

        existing = set(
            (
                await self.session.execute(
                    select(SCIPNotification.substance_cas).where(
                        SCIPNotification.tenant_id == ctx.tenant_id,
                        SCIPNotification.primary_article_id == assessment.object_id,
                        SCIPNotification.substance_cas.in_(list(svhc)),
                    )
                )
            ).scalars().all()
        )

        created = 0
        for cas_number, substance in svhc.items():
            if cas_number in existing:
                continue
            self.session.add(
                SCIPNotification(
                    tenant_id=ctx.tenant_id,
                    primary_article_id=assessment.object_id,
                    article_name=f"{assessment.object_type} {assessment.object_id}",
                    substance_cas=cas_number,
                    substance_name=substance.name,
                    concentration_ppm=concentrations.get(cas_number),
                    safe_use_info=SCIP_SAFE_USE_INFO,
                    created_by=ctx.actor,
                )
            )
            created += 1

        await self.session.flush()
        if created:
            logger.info("SCIP notifications drafted", object_id=assessment.object_id, created=created)
        return created

    async def ensure_risk_alert(self, ctx: RequestContext, assessment: ComplianceAssessment) -> tuple[RiskAlert, bool]:
        """Exactly one open non-compliance alert per entity. Returns (alert, created)."""
        existing = (
            await self.session.execute(
                select(RiskAlert).where(
                    RiskAlert.tenant_id == ctx.tenant_id,
                    RiskAlert.alert_type == NON_COMPLIANCE_ALERT_TYPE,
                    RiskAlert.entity_type == assessment.object_type,
                    RiskAlert.entity_id == assessment.object_id,
                    RiskAlert.status == AlertStatus.OPEN,
                )
            )
        ).scalars().first()
        if existing is not None:
            return existing, False

        alert = RiskAlert(
            tenant_id=ctx.tenant_id,
            alert_type=NON_COMPLIANCE_ALERT_TYPE,
            severity="critical",
            title=f"PFAS Non-Compliance: {assessment.object_type}",
            description=(
                f"{assessment.object_type} {assessment.object_id} failed PFAS compliance assessment. "
                f"{assessment.reasoning}"
            ),
            entity_type=assessment.object_type,
            entity_id=assessment.object_id,
            created_by=ctx.actor,
        )
        self.session.add(alert)
        await self.session.flush()
        logger.info("Risk alert opened", entity_type=assessment.object_type, entity_id=assessment.object_id)
        return alert, True

    async def notify_non_compliance(
        self,
        ctx: RequestContext,
        assessment: ComplianceAssessment,
        target_user: str,
    ) -> Notification:
        """User-facing blocking alert for a non-compliant verdict."""
        notification = Notification(
            tenant_id=ctx.tenant_id,
            notification_type="pfas_alert",
            title="PFAS Non-Compliance Detected",
            message=(
                f"{assessment.object_type} {assessment.object_id} failed PFAS compliance assessment. "
                "Immediate action required."
            ),
            severity="critical",
            target_user=target_user,
            entity_type=assessment.object_type,
            entity_id=assessment.object_id,
        )
        self.session.add(notification)
        await self.session.flush()
        return notification

    async def email_non_compliance(self, assessment: ComplianceAssessment, recipient: str) -> None:
        """
        Email the responsible party.

        Raises:
            EmailDeliveryError: Gateway rejected the message
        """
        body = (
            f"Assessment ID: {assessment.id}\n"
            f"Object: {assessment.object_type} {assessment.object_id}\n\n"
            f"Status: Non-Compliant\n\n"
            f"Reasoning: {assessment.reasoning}\n\n"
            "Please review immediately."
        )
        await self.email_sender.send(recipient, "PFAS Non-Compliance Alert", body)
        logger.info("Non-compliance email sent", to=recipient, assessment_id=str(assessment.id))
