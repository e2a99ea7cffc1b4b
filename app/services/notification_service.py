"""
Notification dispatcher — fire-and-forget transactional email.

Lifecycle responses never wait on email. ``send()`` renders the template,
schedules delivery as a detached asyncio task and returns immediately;
delivery failures are logged and never reach the caller.

Transports:
- ResendEmailTransport: Resend HTTP API via httpx (RESEND_API_KEY set).
- LoggingEmailTransport: logs the message instead (local development).
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from html import escape

import httpx

from app.config import Settings, get_settings
from app.core.interfaces import EmailMessage, IEmailTransport
from app.core.models import format_display_date

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


# ─── Templates ───────────────────────────────────────────────


def _layout(title: str, body: str, support_email: str) -> str:
    year = datetime.now(UTC).year
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{escape(title)}</title></head>"
        "<body style=\"font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; "
        "max-width: 600px; margin: 0 auto; padding: 20px; color: #333;\">"
        f"<h1>{escape(title)}</h1>"
        f"{body}"
        "<hr>"
        f"<p>Questions? Contact us at "
        f"<a href=\"mailto:{escape(support_email)}\">{escape(support_email)}</a></p>"
        f"<p style=\"font-size: 12px; color: #999;\">&copy; {year} GhostNote. All rights reserved.</p>"
        "</body></html>"
    )


def _plan_label(variables: dict) -> str:
    return str(variables.get("plan") or "").capitalize()


def _greeting(variables: dict) -> str:
    return f"<p>Hi {escape(variables.get('name') or 'there')},</p>"


def render_cancellation(variables: dict, support_email: str) -> tuple[str, str]:
    plan = _plan_label(variables)
    end_date = format_display_date(variables.get("end_date"))
    subject = f"Cancellation Confirmed: Your {plan} access ends on {end_date}"
    body = (
        _greeting(variables)
        + f"<p>We've received your request to cancel your <strong>{escape(plan)}</strong> subscription.</p>"
        + f"<p>Your access will end on <strong>{end_date}</strong>. You keep every {escape(plan)} "
        "feature until then, after which your account moves to the free plan.</p>"
        + f"<p><strong>Changed your mind?</strong> Resume any time before {end_date} "
        "to keep your plan without interruption.</p>"
    )
    return subject, _layout("Cancellation Confirmed", body, support_email)


def render_resumption(variables: dict, support_email: str) -> tuple[str, str]:
    plan = _plan_label(variables)
    end_date = format_display_date(variables.get("end_date"))
    subject = f"Welcome back! Your {plan} subscription is active"
    body = (
        _greeting(variables)
        + f"<p>Great news! Your <strong>{escape(plan)}</strong> subscription has been resumed.</p>"
        + f"<p>Your next billing date is <strong>{end_date}</strong>. Thanks for staying with us!</p>"
    )
    return subject, _layout("Subscription Resumed", body, support_email)


def render_payment_failed(variables: dict, support_email: str) -> tuple[str, str]:
    plan = _plan_label(variables)
    subject = f"Action Required: Payment failed for your {plan} subscription"
    body = (
        _greeting(variables)
        + f"<p>We were unable to process your payment for your <strong>{escape(plan)}</strong> "
        "subscription.</p>"
        + "<p>Please update your payment method in your GhostNote billing settings to keep access.</p>"
    )
    return subject, _layout("Payment Failed", body, support_email)


def render_trial_adjusted(variables: dict, support_email: str) -> tuple[str, str]:
    plan = _plan_label(variables)
    subject = f"Important: Your {plan} Free Trial was Adjusted"
    body = (
        _greeting(variables)
        + f"<p>Thank you for subscribing! Your <strong>{escape(plan)}</strong> subscription is active.</p>"
        + "<p>The payment method you used was already used for a free trial on a previous "
        "account, so your subscription started immediately without a trial period.</p>"
    )
    return subject, _layout("Free Trial Adjusted", body, support_email)


TEMPLATES: dict[str, Callable[[dict, str], tuple[str, str]]] = {
    "cancellation": render_cancellation,
    "resumption": render_resumption,
    "payment_failed": render_payment_failed,
    "trial_adjusted": render_trial_adjusted,
}


# ─── Transports ──────────────────────────────────────────────


class ResendEmailTransport(IEmailTransport):
    """Delivers email through the Resend REST API."""

    def __init__(self, api_key: str, sender: str, timeout: float = 10.0):
        self._api_key = api_key
        self._sender = sender
        self._timeout = timeout

    async def deliver(self, message: EmailMessage) -> str:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "from": self._sender,
                    "to": [message.to],
                    "subject": message.subject,
                    "html": message.html,
                },
            )
        response.raise_for_status()
        return response.json().get("id", "")


class LoggingEmailTransport(IEmailTransport):
    """Development transport: logs instead of sending."""

    async def deliver(self, message: EmailMessage) -> str:
        logger.info(f"[DEV EMAIL] To: {message.to} | Subject: {message.subject}")
        return "dev-local"


# ─── Dispatcher ──────────────────────────────────────────────


class NotificationDispatcher:
    """
    Renders templates and delivers them in the background.

    Usage:
        dispatcher = get_notification_dispatcher()
        dispatcher.send("cancellation", "user@example.com", {"name": ..., "plan": ..., "end_date": ...})
    """

    def __init__(self, transport: IEmailTransport, support_email: str = ""):
        self._transport = transport
        self._support_email = support_email
        self._pending: set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def render(self, template: str, recipient: str, variables: dict) -> EmailMessage:
        renderer = TEMPLATES.get(template)
        if renderer is None:
            raise ValueError(f"Unknown email template: {template}")
        subject, html = renderer(variables, self._support_email)
        return EmailMessage(to=recipient, subject=subject, html=html)

    def send(self, template: str, recipient: str, variables: dict) -> asyncio.Task | None:
        """
        Schedule an email without waiting for it.

        Returns the delivery task, or None if nothing was scheduled. Never
        raises: a bad template or missing recipient is logged and dropped.
        """
        if not recipient:
            logger.warning(f"Skipping '{template}' email: account has no email address")
            return None

        try:
            message = self.render(template, recipient, variables)
        except Exception as e:
            logger.error(f"Failed to render '{template}' email: {e}")
            return None

        task = asyncio.create_task(self._deliver(template, message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _deliver(self, template: str, message: EmailMessage) -> None:
        try:
            message_id = await self._transport.deliver(message)
            logger.info(f"Sent '{template}' email to {message.to} (id={message_id})")
        except Exception as e:
            logger.error(f"Failed to send '{template}' email to {message.to}: {e}")

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# ─── Module-level singleton ──────────────────────────────────

_dispatcher: NotificationDispatcher | None = None


def build_email_transport(settings: Settings) -> IEmailTransport:
    if settings.email_enabled:
        return ResendEmailTransport(
            api_key=settings.resend_api_key,
            sender=settings.email_from,
            timeout=settings.email_timeout_seconds,
        )
    return LoggingEmailTransport()


def get_notification_dispatcher() -> NotificationDispatcher:
    """Get the shared dispatcher, creating it from settings on first use."""
    global _dispatcher
    if _dispatcher is None:
        settings = get_settings()
        _dispatcher = NotificationDispatcher(
            transport=build_email_transport(settings),
            support_email=settings.support_email,
        )
    return _dispatcher
