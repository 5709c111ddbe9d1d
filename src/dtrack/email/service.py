"""
Email service with provider abstraction.

Supports SMTP (aiosmtplib), the Resend API (httpx), and a log-only provider
for development. Provider is selected via ``DTRACK_EMAIL_PROVIDER``.

Delivery never raises to callers: ``send_email``/``send_template`` return a
``DeliveryResult`` so the scheduler can count failures per recipient.
"""

from __future__ import annotations

import hashlib
import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING, Any

import aiosmtplib
import httpx
import structlog

from dtrack.config import get_settings
from dtrack.email.templates import daily_summary, deadline_overdue, deadline_reminder, deadline_shared

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = structlog.get_logger()

_TEMPLATE_REGISTRY: dict[str, Any] = {
    "deadline_reminder": deadline_reminder,
    "deadline_overdue": deadline_overdue,
    "daily_summary": daily_summary,
    "deadline_shared": deadline_shared,
}


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    error: str | None = None


class BaseEmailProvider(ABC):
    """Abstract base class for email delivery providers."""

    name = "base"

    @abstractmethod
    async def send(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> None:
        """Send an email. Raises on failure."""
        ...


class SMTPProvider(BaseEmailProvider):
    """Send emails via SMTP using aiosmtplib."""

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_address: str,
        from_name: str,
        use_tls: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.from_name = from_name
        self.use_tls = use_tls

    async def send(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["From"] = f"{self.from_name} <{self.from_address}>"
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        tls_context = ssl.create_default_context() if self.use_tls else None
        await aiosmtplib.send(
            msg,
            hostname=self.host,
            port=self.port,
            username=self.username or None,
            password=self.password or None,
            start_tls=self.use_tls,
            tls_context=tls_context,
        )


class ResendProvider(BaseEmailProvider):
    """Send emails via Resend API."""

    name = "resend"

    def __init__(self, api_key: str, from_address: str, from_name: str) -> None:
        self.api_key = api_key
        self.from_address = from_address
        self.from_name = from_name

    async def send(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                "https://api.resend.com/emails",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "from": f"{self.from_name} <{self.from_address}>",
                    "to": [to_email],
                    "subject": subject,
                    "html": html_body,
                    "text": text_body,
                },
                timeout=10.0,
            )
            response.raise_for_status()


class LogProvider(BaseEmailProvider):
    """Log emails instead of sending them (development)."""

    name = "log"

    async def send(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        logger.info("email_logged", to=to_email, subject=subject, text=text_body)


def _create_provider() -> BaseEmailProvider:
    """Create email provider based on configuration."""
    settings = get_settings()
    provider_name = settings.email_provider.lower()

    if provider_name == "smtp":
        return SMTPProvider(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_address=settings.email_from_address,
            from_name=settings.email_from_name,
            use_tls=settings.smtp_use_tls,
        )
    if provider_name == "resend":
        return ResendProvider(
            api_key=settings.resend_api_key,
            from_address=settings.email_from_address,
            from_name=settings.email_from_name,
        )
    if provider_name == "log":
        return LogProvider()
    msg = f"Unsupported email provider: {provider_name}"
    raise ValueError(msg)


class EmailService:
    """
    High-level email service for deadline notifications.

    Handles per-address rate limiting and template rendering.
    """

    RATE_LIMIT_WINDOW = 3600

    def __init__(
        self,
        provider: BaseEmailProvider | None = None,
        redis: Redis | None = None,
        rate_limit_per_hour: int | None = None,
    ) -> None:
        self.provider = provider or _create_provider()
        self._redis = redis
        self.rate_limit_max = rate_limit_per_hour or get_settings().email_rate_limit_per_hour

    async def _check_rate_limit(self, email: str) -> bool:
        """Check if we can send another email to this address."""
        if self._redis is None:
            return True
        key = f"email_rate:{hashlib.sha256(email.lower().encode()).hexdigest()}"
        count = await self._redis.incr(key)
        if count == 1:
            await self._redis.expire(key, self.RATE_LIMIT_WINDOW)
        return count <= self.rate_limit_max

    async def send_email(self, to: str, subject: str, html_body: str, text_body: str) -> DeliveryResult:
        """Send an email with rate limiting. Never raises."""
        try:
            if not await self._check_rate_limit(to):
                logger.warning("email_rate_limited", to=to, subject=subject)
                return DeliveryResult(success=False, error="rate_limited")
            await self.provider.send(to, subject, html_body, text_body)
        except Exception as exc:
            logger.exception("email_send_failed", to=to, provider=self.provider.name)
            return DeliveryResult(success=False, error=str(exc) or exc.__class__.__name__)
        logger.info("email_sent", to=to, subject=subject, provider=self.provider.name)
        return DeliveryResult(success=True)

    async def send_template(self, to: str, template_name: str, context: dict[str, Any]) -> DeliveryResult:
        """
        Render a template and send.

        Args:
            to: Recipient email.
            template_name: One of deadline_reminder, deadline_overdue, daily_summary, deadline_shared.
            context: Keyword arguments for the template function.

        Raises:
            ValueError: If the template name is unknown or the context does not fit it.
        """
        template_func = _TEMPLATE_REGISTRY.get(template_name)
        if template_func is None:
            msg = f"Unknown template: {template_name}"
            raise ValueError(msg)
        try:
            subject, html_body, text_body = template_func(**context)
        except TypeError as e:
            msg = f"Invalid context for template {template_name}: {e}"
            raise ValueError(msg) from e

        return await self.send_email(to, subject, html_body, text_body)


# Module-level singleton
_email_service: EmailService | None = None


def get_email_service(redis: Redis | None = None) -> EmailService:
    """Get or create the email service singleton."""
    global _email_service  # noqa: PLW0603
    if _email_service is None:
        _email_service = EmailService(redis=redis)
    return _email_service


def reset_email_service() -> None:
    """Reset the email service singleton (for testing)."""
    global _email_service  # noqa: PLW0603
    _email_service = None
