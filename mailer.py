"""Outbound email over SMTP."""
import logging
import os
import smtplib
from email.message import EmailMessage

from errors import UpstreamFailure

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
MAIL_FROM = os.getenv("MAIL_FROM") or SMTP_USER or "no-reply@localhost"


def send_email(to: str, subject: str, body: str) -> None:
    if not SMTP_HOST:
        logger.error("Cannot send mail: SMTP_HOST is not configured")
        raise UpstreamFailure("Email service is not configured")

    msg = EmailMessage()
    msg["From"] = MAIL_FROM
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=15) as smtp:
            smtp.starttls()
            if SMTP_USER and SMTP_PASSWORD:
                smtp.login(SMTP_USER, SMTP_PASSWORD)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Sending mail via %s failed: %s", SMTP_HOST, e)
        raise UpstreamFailure("Failed to send email")


def send_otp_email(to: str, code: str, minutes: int) -> None:
    body = (
        f"Your password reset code is {code}.\n\n"
        f"It expires in {minutes} minutes. If you did not ask to reset your "
        "password you can ignore this email."
    )
    send_email(to, "Your password reset code", body)
