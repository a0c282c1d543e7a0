"""
Email Utilities
===============

Transactional emails: admin invites (password setup), firm creation
notices and password resets. Supports SMTP and a log-only dev mode.
"""

import os
import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional

from .pii import mask_email

logger = logging.getLogger(__name__)


def get_email_config():
    """Get email configuration from environment variables."""
    return {
        "smtp_host": os.environ.get("SMTP_HOST", ""),
        "smtp_port": int(os.environ.get("SMTP_PORT", "587")),
        "smtp_user": os.environ.get("SMTP_USER", ""),
        "smtp_password": os.environ.get("SMTP_PASSWORD", ""),
        "smtp_from": os.environ.get("SMTP_FROM", "noreply@docket.local"),
        "smtp_use_tls": os.environ.get("SMTP_USE_TLS", "true").lower() == "true",
        "app_url": os.environ.get("APP_URL", "http://localhost:5173"),
    }


def is_email_configured() -> bool:
    """Check if SMTP is properly configured."""
    config = get_email_config()
    return bool(config["smtp_host"] and config["smtp_user"] and config["smtp_password"])


def send_email(
    to_email: str,
    subject: str,
    html_body: str,
    text_body: Optional[str] = None
) -> bool:
    """
    Send an email.

    Returns True if sent successfully, False otherwise.
    In development mode (SMTP not configured), logs the email instead.
    """
    config = get_email_config()

    if not is_email_configured():
        logger.info(f"[DEV MODE] Email would be sent to {mask_email(to_email)}: {subject}")
        return True

    try:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = config["smtp_from"]
        msg["To"] = to_email

        if text_body:
            msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        with smtplib.SMTP(config["smtp_host"], config["smtp_port"]) as server:
            if config["smtp_use_tls"]:
                server.starttls()
            server.login(config["smtp_user"], config["smtp_password"])
            server.sendmail(config["smtp_from"], to_email, msg.as_string())

        logger.info(f"Email sent successfully to {mask_email(to_email)}")
        return True

    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email to {mask_email(to_email)}: {e}")
        return False


def send_password_setup_email(
    to_email: str,
    name: str,
    token: str,
    xid: str,
    firm_slug: Optional[str] = None,
) -> bool:
    """Invite a user to set their password (admin onboarding / new users)."""
    app_url = get_email_config()["app_url"].rstrip("/")
    prefix = f"/f/{firm_slug}" if firm_slug else ""
    link = f"{app_url}{prefix}/set-password?token={token}"

    html_body = f"""
    <p>Hello {name},</p>
    <p>An account has been created for you (xID: <strong>{xid}</strong>).</p>
    <p><a href="{link}">Set your password</a> to activate it. The link expires in 48 hours.</p>
    """
    text_body = f"Hello {name},\n\nYour xID is {xid}. Set your password: {link}\n"
    return send_email(to_email, "Set up your Docket account", html_body, text_body)


def send_firm_created_email(
    to_email: str,
    firm_id: str,
    firm_name: str,
    default_client_id: str,
    admin_xid: str,
    admin_email: str,
) -> bool:
    """Notify the platform SuperAdmin that a firm hierarchy was created."""
    html_body = f"""
    <p>Firm <strong>{firm_name}</strong> ({firm_id}) has been created.</p>
    <ul>
      <li>Default client: {default_client_id}</li>
      <li>Admin: {admin_xid} ({admin_email})</li>
    </ul>
    """
    return send_email(to_email, f"Firm created: {firm_name}", html_body)


def send_password_reset_email(to_email: str, reset_token: str, user_name: Optional[str] = None) -> bool:
    """
    Send a password reset email.

    Returns:
        True if sent successfully, False otherwise
    """
    app_url = get_email_config()["app_url"].rstrip("/")
    reset_link = f"{app_url}/reset-password?token={reset_token}"
    greeting = f"Hello {user_name}," if user_name else "Hello,"

    html_body = f"""
    <p>{greeting}</p>
    <p>We received a request to reset your password.</p>
    <p><a href="{reset_link}">Reset password</a> (valid for one hour).</p>
    <p>If you did not ask for this, ignore this message.</p>
    """
    text_body = f"{greeting}\n\nReset your password: {reset_link}\n"
    return send_email(to_email, "Password reset", html_body, text_body)


def dev_token_fields(token: str) -> dict:
    """
    In development without SMTP, expose one-time tokens in the response so
    invites and resets can be completed by hand. Empty otherwise.
    """
    is_dev = os.environ.get("ENVIRONMENT", "development") == "development"
    if is_dev and not is_email_configured():
        return {
            "_dev_token": token,
            "_dev_note": "SMTP not configured. Configure SMTP_HOST, SMTP_USER, SMTP_PASSWORD to send real emails.",
        }
    return {}
