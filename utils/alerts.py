# utils/alerts.py
import asyncio
import logging
import os
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from pathlib import Path
from typing import Awaitable, Callable, Optional

import httpx
from dotenv import load_dotenv
from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape
from pydantic import BaseModel, ValidationError

load_dotenv()

RESEND_API_URL = "https://api.resend.com/emails"
SMTP_SSL_PORT = 465
SMTP_STARTTLS_PORT = 587

TEMPLATE_DIR = Path(__file__).parent / "templates"
ENV = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html",)),
)

logger = logging.getLogger("alerts")
logger.setLevel(logging.INFO)


def _env_flag(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class EmailConfig(BaseModel):
    disabled: bool = False
    resend_api_key: Optional[str] = None
    resend_from: str = "Steam Bot <onboarding@resend.dev>"
    smtp_host: str = "smtp.gmail.com"
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    destination: Optional[str] = None
    timeout: float = 30.0

    @classmethod
    def from_env(cls):
        """Read the email settings from the environment (.env included)."""
        values = {
            "disabled": _env_flag("EMAIL_DISABLED"),
            "resend_api_key": os.getenv("RESEND_API_KEY") or None,
            "smtp_user": os.getenv("EMAIL_USER") or None,
            "smtp_pass": os.getenv("EMAIL_PASS") or None,
            "destination": os.getenv("DESTINATION_EMAIL") or None,
        }
        if os.getenv("RESEND_FROM"):
            values["resend_from"] = os.getenv("RESEND_FROM")
        if os.getenv("SMTP_HOST"):
            values["smtp_host"] = os.getenv("SMTP_HOST")
        if os.getenv("SMTP_TIMEOUT"):
            values["timeout"] = float(os.getenv("SMTP_TIMEOUT"))
        return cls(**values)

    @property
    def resend_configured(self):
        return bool(self.resend_api_key and self.destination)

    @property
    def smtp_configured(self):
        return bool(self.smtp_user and self.smtp_pass and self.destination)


@dataclass
class DeliveryStrategy:
    name: str
    configured: bool
    send: Callable[[EmailConfig, str, str], Awaitable[None]]


def render_digest(records):
    """
    Render the promotions digest email.

    Args:
        records (list[PromotionRecord]): Promotions of the current run

    Returns:
        tuple[str, str]: (subject, html). Items are listed by discount,
            highest first; equal discounts keep their original order.
    """
    ordered = sorted(records, key=lambda r: r.discount_percent, reverse=True)
    html = ENV.get_template("digest.html").render(
        total=len(ordered), promotions=ordered
    )
    subject = f"[Steam Bot] {len(ordered)} games on sale on Steam!"
    return subject, html


async def send_via_resend(config, subject, html):
    """POST the digest to the Resend transactional email API."""
    payload = {
        "from": config.resend_from,
        "to": [config.destination],
        "subject": subject,
        "html": html,
    }
    headers = {"Authorization": f"Bearer {config.resend_api_key}"}
    async with httpx.AsyncClient(timeout=15.0) as client:
        response = await client.post(RESEND_API_URL, json=payload, headers=headers)
        response.raise_for_status()


def build_message(config, subject, html):
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = config.smtp_user
    msg["To"] = config.destination
    msg.set_content("Your mail client does not display HTML. Open the web page instead.")
    msg.add_alternative(html, subtype="html")
    return msg


def _open_smtp(config, port):
    """Connect and log in; port 465 is implicit TLS, anything else upgrades with STARTTLS."""
    context = ssl.create_default_context()
    if port == SMTP_SSL_PORT:
        server = smtplib.SMTP_SSL(
            config.smtp_host, port, timeout=config.timeout, context=context
        )
    else:
        server = smtplib.SMTP(config.smtp_host, port, timeout=config.timeout)
    try:
        server.ehlo()
        if port != SMTP_SSL_PORT:
            server.starttls(context=context)
            server.ehlo()
        server.login(config.smtp_user, config.smtp_pass)
    except Exception:
        server.close()
        raise
    return server


def _deliver_smtp(config, message):
    try:
        server = _open_smtp(config, SMTP_SSL_PORT)
        logger.info(f"SMTP server verified on port {SMTP_SSL_PORT}")
    except (smtplib.SMTPException, OSError) as e:
        logger.warning(
            f"Port {SMTP_SSL_PORT} failed ({e}), trying port {SMTP_STARTTLS_PORT} (STARTTLS)"
        )
        server = _open_smtp(config, SMTP_STARTTLS_PORT)
        logger.info(f"SMTP server verified on port {SMTP_STARTTLS_PORT}")
    with server:
        server.send_message(message)


async def send_via_smtp(config, subject, html):
    """
    Send the digest over SMTP.

    Tries implicit TLS on port 465 first. If connecting or authenticating
    there fails, retries once on port 587 with STARTTLS. smtplib is blocking,
    so the exchange runs in a worker thread.

    Args:
        config (EmailConfig): Must carry SMTP user, password and destination
        subject (str): Email subject
        html (str): Rendered digest

    Raises:
        smtplib.SMTPException or OSError: When both ports fail or sending fails
    """
    message = build_message(config, subject, html)
    await asyncio.to_thread(_deliver_smtp, config, message)


def build_delivery_chain(config):
    """Delivery strategies in priority order: transactional API first, then SMTP."""
    return [
        DeliveryStrategy("resend", config.resend_configured, send_via_resend),
        DeliveryStrategy("smtp", config.smtp_configured, send_via_smtp),
    ]


def _log_hints(strategy, error):
    if isinstance(error, smtplib.SMTPAuthenticationError):
        logger.error("Hint: check EMAIL_USER and EMAIL_PASS")
        logger.error(
            "Hint: for Gmail, EMAIL_PASS must be an app password "
            "(https://myaccount.google.com/apppasswords)"
        )
    elif strategy == "smtp" and isinstance(error, (TimeoutError, ConnectionError)):
        logger.error("Hint: the host may be blocking outbound SMTP connections")
        logger.error(
            "Hint: set RESEND_API_KEY to send through the API, "
            "or set EMAIL_DISABLED=true and use the web API only"
        )
    elif isinstance(error, httpx.HTTPStatusError) and error.response.status_code in (401, 403):
        logger.error("Hint: RESEND_API_KEY was rejected, check the key and sender domain")


async def notify(records, config=None):
    """
    Email a digest of the promotions, best effort.

    Walks the delivery chain in order: strategies that are not configured are
    skipped, a failing strategy is logged and the next one is tried, and the
    first success ends the walk. Nothing is ever raised to the caller.

    Args:
        records (list[PromotionRecord]): Promotions of the current run
        config (EmailConfig, optional): Defaults to EmailConfig.from_env()

    Returns:
        str or None: Name of the strategy that delivered the email, or None
            when email is disabled, there is nothing to send, or every
            strategy failed or was unconfigured

    Logs:
        - Info when skipped (disabled / no promotions / not configured)
        - Error per failed strategy, with configuration hints
        - Error with setup instructions when the chain is exhausted
    """
    if config is None:
        try:
            config = EmailConfig.from_env()
        except (ValueError, ValidationError) as e:
            logger.error(f"Email not sent: invalid email configuration: {e}")
            return None
    if config.disabled:
        logger.info("Email disabled (EMAIL_DISABLED=true), not sending")
        return None
    records = list(records)
    if not records:
        logger.info("No promotions found, email not sent")
        return None

    try:
        subject, html = render_digest(records)
    except TemplateError as e:
        logger.error(f"Could not render email digest: {e}")
        return None

    for strategy in build_delivery_chain(config):
        if not strategy.configured:
            logger.info(f"Email via {strategy.name} not configured, skipping")
            continue
        try:
            await strategy.send(config, subject, html)
        except Exception as e:
            logger.error(f"Email via {strategy.name} failed: {e!r}")
            _log_hints(strategy.name, e)
            continue
        logger.info(f"Email sent via {strategy.name} with {len(records)} promotions")
        return strategy.name

    logger.error(
        "Email not sent: no delivery method succeeded. Set RESEND_API_KEY and "
        "DESTINATION_EMAIL for the API, or EMAIL_USER, EMAIL_PASS and "
        "DESTINATION_EMAIL for SMTP."
    )
    return None
