"""
Account emails: registration confirmation and password reset.

Sending is fire-and-forget. Callers schedule `send` as a background task and
the user's request never fails because of SMTP.
"""
import logging
import os
import smtplib
from email.message import EmailMessage
from enum import Enum

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("SMTP_HOST", "").strip()
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "").strip()
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_FROM = os.getenv("SMTP_FROM", "Project Tracker <accounts@tracker.local>").strip()
SMTP_USE_TLS = os.getenv("SMTP_TLS", "1") == "1"
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/")


class MailKind(str, Enum):
    REGISTER_CONFIRMATION = "registerConfirmation"
    PASSWORD_RESET = "passwordReset"


def smtp_is_configured() -> bool:
    return bool(SMTP_HOST and SMTP_FROM)


def build_message(kind: MailKind, to: str, data: dict) -> EmailMessage:
    name = data.get("name", "")
    token = data["token"]
    if kind == MailKind.REGISTER_CONFIRMATION:
        subject = "Project Tracker - Confirm your account"
        body = (
            f"Hi {name}, your account is almost ready.\n\n"
            f"Confirm it by opening this link: {FRONTEND_URL}/confirm/{token}\n\n"
            "If you did not create this account you can ignore this email.\n"
        )
    else:
        subject = "Project Tracker - Reset your password"
        body = (
            f"Hi {name}, you asked to reset your password.\n\n"
            f"Choose a new one here: {FRONTEND_URL}/forgot-password/{token}\n\n"
            "If you did not ask for this you can ignore this email.\n"
        )

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = SMTP_FROM
    msg["To"] = to
    msg.set_content(body)
    return msg


def send(kind: MailKind, to: str, data: dict) -> bool:
    kind = MailKind(kind)
    if not smtp_is_configured():
        logger.info("SMTP not configured, skipping %s email to %s", kind.value, to)
        return False

    msg = build_message(kind, to, data)
    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=10) as smtp:
            if SMTP_USE_TLS:
                smtp.starttls()
            if SMTP_USER:
                smtp.login(SMTP_USER, SMTP_PASSWORD)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError):
        logger.exception("Failed to send %s email to %s", kind.value, to)
        return False
    logger.info("Sent %s email to %s", kind.value, to)
    return True
