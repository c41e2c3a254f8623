"""Benefit digests and the notifiers that deliver them."""
import html
import logging
import re
import smtplib
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from perkcycle.config import Settings
from perkcycle.services.benefit_cycles import days_remaining_in_cycle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DigestItem:
    benefit_id: str
    description: str
    cycle_start: datetime
    cycle_end: datetime
    occurrence_index: int = 0
    max_amount: float | None = None


@dataclass
class BenefitDigest:
    """Newly active and soon-expiring statuses for one account."""

    account_id: str
    user_id: str
    user_email: str
    card_name: str
    generated_at: datetime
    new_cycles: list[DigestItem] = field(default_factory=list)
    expiring: list[DigestItem] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.new_cycles and not self.expiring


class Notifier(Protocol):
    def send(self, digest: BenefitDigest) -> None:
        """Deliver ``digest``; raise on failure."""


class InMemoryNotifier:
    """Collects digests instead of sending them."""

    def __init__(self):
        self.sent: list[BenefitDigest] = []

    def send(self, digest: BenefitDigest) -> None:
        self.sent.append(digest)


def _format_day(value: datetime) -> str:
    return value.strftime("%b %d, %Y")


def generate_digest_html(digest: BenefitDigest) -> str:
    """Generate HTML content for a benefit digest email."""
    card = html.escape(digest.card_name)
    body = f"""
    <html>
    <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <h1 style="color: #1e40af;">Your {card} benefits</h1>
    """

    if digest.new_cycles:
        body += """
        <h2 style="color: #16a34a; margin-top: 24px;">New benefit cycles</h2>
        <ul>
        """
        for item in digest.new_cycles:
            body += f"""
            <li><strong>{html.escape(item.description)}</strong>: {_format_day(item.cycle_start)} - {_format_day(item.cycle_end)}</li>
            """
        body += "</ul>"

    if digest.expiring:
        body += """
        <h2 style="color: #ea580c; margin-top: 24px;">Expiring soon</h2>
        <table style="width: 100%; border-collapse: collapse;">
            <tr style="background: #f3f4f6;">
                <th style="padding: 8px; text-align: left;">Benefit</th>
                <th style="padding: 8px; text-align: right;">Ends</th>
                <th style="padding: 8px; text-align: right;">Days</th>
            </tr>
        """
        for item in digest.expiring:
            days = days_remaining_in_cycle(item.cycle_end, digest.generated_at)
            body += f"""
            <tr style="border-bottom: 1px solid #e5e7eb;">
                <td style="padding: 8px;">{html.escape(item.description)}</td>
                <td style="padding: 8px; text-align: right;">{_format_day(item.cycle_end)}</td>
                <td style="padding: 8px; text-align: right; color: #ea580c;">{days}d</td>
            </tr>
            """
        body += "</table>"

    body += """
        <p style="margin-top: 24px; padding-top: 16px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 12px;">
            You're receiving this because you have email notifications enabled.
        </p>
    </body>
    </html>
    """
    return body


def html_to_text(content: str) -> str:
    """Plain-text fallback for an HTML body."""
    text = content.replace("<br>", "\n").replace("</p>", "\n\n").replace("</li>", "\n").replace("</tr>", "\n")
    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text)
    return "\n".join(line.strip() for line in text.splitlines() if line.strip())


def digest_subject(digest: BenefitDigest) -> str:
    if digest.expiring and not digest.new_cycles:
        return f"{digest.card_name}: benefits expiring soon"
    return f"{digest.card_name}: new benefit cycles have started"


class EmailNotifier:
    """Send digests over SMTP with an HTML body and a plain-text alternative."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        from_email: str = "noreply@perkcycle.app",
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailNotifier | None":
        if not settings.smtp_host:
            logger.info("SMTP not configured, email notifications disabled")
            return None
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            from_email=settings.smtp_from_email,
        )

    def build_message(self, digest: BenefitDigest) -> MIMEMultipart:
        html_content = generate_digest_html(digest)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = digest_subject(digest)
        msg["From"] = self.from_email
        msg["To"] = digest.user_email
        msg.attach(MIMEText(html_to_text(html_content), "plain"))
        msg.attach(MIMEText(html_content, "html"))
        return msg

    def send(self, digest: BenefitDigest) -> None:
        msg = self.build_message(digest)
        with smtplib.SMTP(self.host, self.port) as server:
            server.starttls()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(msg)
        logger.debug(f"Sent digest for account {digest.account_id} to {digest.user_email}")
