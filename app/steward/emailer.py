"""
Transactional email over SMTP.

send_email() never raises: callers get (ok, message) and decide whether a
failure is fatal (statement sends record it, invitations fall back to
showing the code).
"""
from __future__ import annotations

import logging
import smtplib
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app
from markupsafe import escape

logger = logging.getLogger(__name__)


def send_email(
    to: str,
    subject: str,
    body: str,
    *,
    html: str | None = None,
    attachments: list[tuple[str, bytes, str]] | None = None,
) -> tuple[bool, str]:
    """
    Send an email using SMTP configuration from app.config.

    attachments: list of (filename, bytes, content_type) tuples.
    Returns (success, message).
    """
    cfg = current_app.config
    smtp_server = (cfg.get("SMTP_SERVER") or "").strip()
    smtp_port = (cfg.get("SMTP_PORT") or "").strip()
    smtp_use_tls = bool(cfg.get("SMTP_USE_TLS", True))
    smtp_username = (cfg.get("SMTP_USERNAME") or "").strip()
    smtp_password = (cfg.get("SMTP_PASSWORD") or "").strip()
    email_from = (cfg.get("EMAIL_FROM") or "").strip()

    if not smtp_server:
        logger.warning("Email not sent to %s: SMTP_SERVER not configured", to)
        return False, "SMTP server not configured (SMTP_SERVER environment variable missing)"
    if not email_from:
        logger.warning("Email not sent to %s: EMAIL_FROM not configured", to)
        return False, "Email from address not configured (EMAIL_FROM environment variable missing)"

    if html:
        content: MIMEText | MIMEMultipart = MIMEMultipart("alternative")
        content.attach(MIMEText(body, "plain"))
        content.attach(MIMEText(html, "html"))
    else:
        content = MIMEText(body, "plain")

    if attachments:
        msg: MIMEText | MIMEMultipart = MIMEMultipart()
        msg.attach(content)
        for filename, file_bytes, content_type in attachments:
            maintype, _, subtype = (content_type or "application/octet-stream").partition("/")
            part = MIMEBase(maintype, subtype or "octet-stream")
            part.set_payload(file_bytes)
            encoders.encode_base64(part)
            part.add_header("Content-Disposition", "attachment", filename=filename)
            msg.attach(part)
    else:
        msg = content

    msg["Subject"] = subject
    msg["From"] = email_from
    msg["To"] = to

    try:
        server = smtplib.SMTP(smtp_server, int(smtp_port)) if smtp_port else smtplib.SMTP(smtp_server)
        try:
            if smtp_use_tls:
                server.starttls()
            if smtp_username and smtp_password:
                server.login(smtp_username, smtp_password)
            server.send_message(msg)
        finally:
            server.quit()
    except smtplib.SMTPAuthenticationError as e:
        logger.error("SMTP authentication failed sending to %s: %s", to, e)
        return False, f"SMTP authentication failed: {e}"
    except (smtplib.SMTPException, OSError) as e:
        logger.error("SMTP error sending to %s: %s", to, e)
        return False, f"SMTP error: {e}"

    logger.info("Sent email to %s subject=%r", to, subject)
    return True, "sent"


def send_invitation_email(*, email: str, invite_code: str, inviter: str, church_name: str, accept_url: str) -> tuple[bool, str]:
    body = (
        f"{inviter} has invited you to join {church_name} on Steward.\n\n"
        f"Accept the invitation here:\n{accept_url}\n\n"
        f"Or use this invitation code when signing up: {invite_code}\n\n"
        "This invitation expires in 7 days."
    )
    html = (
        f"<p><strong>{escape(inviter)}</strong> has invited you to join <strong>{escape(church_name)}</strong> on Steward.</p>"
        f'<p><a href="{escape(accept_url)}">Accept the invitation</a></p>'
        f"<p>Invitation code: <code>{invite_code}</code></p>"
        "<p>This invitation expires in 7 days.</p>"
    )
    return send_email(email, f"You're invited to join {church_name}", body, html=html)


def send_giving_statement_email(
    *,
    email: str,
    household_name: str,
    church_name: str,
    year: int,
    pdf_bytes: bytes,
    filename: str,
) -> tuple[bool, str]:
    body = (
        f"Dear {household_name},\n\n"
        f"Attached is your {year} contribution statement from {church_name}. "
        "Please keep it with your tax records.\n\n"
        f"Thank you for your generous support of {church_name}."
    )
    return send_email(
        email,
        f"{church_name} - {year} Giving Statement",
        body,
        attachments=[(filename, pdf_bytes, "application/pdf")],
    )


def send_super_admin_alert(subject: str, body: str) -> tuple[bool, str]:
    to = (current_app.config.get("SUPER_ADMIN_ALERT_EMAIL") or "").strip()
    if not to:
        return False, "SUPER_ADMIN_ALERT_EMAIL not configured"
    return send_email(to, subject, body)
