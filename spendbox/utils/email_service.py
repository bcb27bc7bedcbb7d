"""
Email Service
Sends account emails (verification, password reset) over SMTP.
Nothing is sent when SMTP_HOST is empty.
"""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from spendbox.core.config import settings

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, body_html: str, body_text: Optional[str] = None) -> bool:
    """
    Send an email using the configured SMTP server.

    Returns:
        bool: True if the email was handed to the server, False otherwise
    """
    if not settings.SMTP_HOST:
        logger.info(f"SMTP_HOST not configured, skipping email '{subject}'")
        return False

    msg = MIMEMultipart("alternative")
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    if body_text:
        msg.attach(MIMEText(body_text, "plain"))
    msg.attach(MIMEText(body_html, "html"))

    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as server:
            server.starttls()
            if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
                server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            server.send_message(msg)
        logger.info(f"Email '{subject}' sent")
        return True
    except smtplib.SMTPAuthenticationError as e:
        logger.error(f"SMTP authentication failed: {str(e)}")
        return False
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Error sending email: {str(e)}")
        return False


def send_verification_email(to_email: str, first_name: str, token: str) -> bool:
    link = f"{settings.FRONTEND_URL}/verify-email?token={token}"
    html_body = f"""
    <html>
    <body style="font-family: Arial, sans-serif; color: #333;">
        <h2>Welcome to {settings.PROJECT_NAME}, {first_name}!</h2>
        <p>Please confirm your email address by following the link below.</p>
        <p><a href="{link}">Verify my email</a></p>
    </body>
    </html>
    """
    text_body = f"Welcome to {settings.PROJECT_NAME}, {first_name}!\n\nVerify your email: {link}\n"
    return send_email(to_email, f"Verify your {settings.PROJECT_NAME} account", html_body, text_body)


def send_password_reset_email(to_email: str, token: str) -> bool:
    link = f"{settings.FRONTEND_URL}/reset-password?token={token}"
    minutes = settings.PASSWORD_RESET_EXPIRE_MINUTES
    html_body = f"""
    <html>
    <body style="font-family: Arial, sans-serif; color: #333;">
        <h2>Password reset</h2>
        <p>Someone asked to reset the password of your {settings.PROJECT_NAME} account.
        The link below is valid for {minutes} minutes.</p>
        <p><a href="{link}">Reset my password</a></p>
        <p>If this was not you, you can ignore this email.</p>
    </body>
    </html>
    """
    text_body = f"Reset your password (valid for {minutes} minutes): {link}\n"
    return send_email(to_email, f"{settings.PROJECT_NAME} password reset", html_body, text_body)
