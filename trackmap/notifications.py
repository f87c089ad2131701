"""Notification emails.

Emails are sent with fastapi-mail from FastAPI background tasks. A failed
delivery is logged and reported through the return value of
:func:`send_email`; it never reaches the request that scheduled it.
"""

import asyncio
from html import escape
import logging

from fastapi import BackgroundTasks
from fastapi_mail import FastMail, MessageSchema, MessageType

from .core import get_mail_config, get_settings

logger = logging.getLogger(__name__)


async def send_email(to: str, subject: str, html_body: str) -> bool:
    """
    Send one HTML email.

    Args:
        to (str): Recipient address.
        subject (str): Subject line.
        html_body (str): HTML content.

    Returns:
        bool: ``True`` if the message was handed to the SMTP server.
    """
    message = MessageSchema(
        subject=subject,
        recipients=[to],
        body=html_body,
        subtype=MessageType.html,
    )
    fm = FastMail(get_mail_config())
    try:
        await fm.send_message(message)
    except Exception:
        logger.exception("Failed to send email %r to %s", subject, to)
        return False
    logger.info("Sent email %r to %s", subject, to)
    return True


def welcome_email(username: str) -> tuple[str, str]:
    settings = get_settings()
    body = f"""
        <html>
          <body>
            <h2>Welcome, {escape(username)}!</h2>
            <p>Your account is ready. Find and rate tracks near you:</p>
            <a href="{escape(settings.FRONTEND_URL)}">Open the track map</a>
          </body>
        </html>
        """
    return "Welcome to BMX-MTB Tracker", body


def email_changed_old_address(username: str, new_email: str) -> tuple[str, str]:
    body = f"""
        <html>
          <body>
            <h2>Your email address was changed</h2>
            <p>Hi {escape(username)}, the email address of your account was
            changed to {escape(new_email)}.</p>
            <p>If you did not make this change, contact us right away.</p>
          </body>
        </html>
        """
    return "Your email address was changed", body


def email_changed_new_address(username: str) -> tuple[str, str]:
    body = f"""
        <html>
          <body>
            <h2>Email address confirmed</h2>
            <p>Hi {escape(username)}, this address is now used for your
            BMX-MTB Tracker account.</p>
          </body>
        </html>
        """
    return "Email address updated", body


async def send_welcome_email_task(email: str, username: str) -> bool:
    subject, body = welcome_email(username)
    return await send_email(email, subject, body)


async def send_email_changed_task(
    old_email: str, new_email: str, username: str
) -> list[bool]:
    """Notify both the previous and the new address of an email change."""
    old_subject, old_body = email_changed_old_address(username, new_email)
    new_subject, new_body = email_changed_new_address(username)
    return await asyncio.gather(
        send_email(old_email, old_subject, old_body),
        send_email(new_email, new_subject, new_body),
    )


def send_welcome_email(background_tasks: BackgroundTasks, email: str, username: str):
    """Schedule the welcome email for a newly registered user."""
    background_tasks.add_task(send_welcome_email_task, email, username)


def send_email_changed(
    background_tasks: BackgroundTasks, old_email: str, new_email: str, username: str
):
    """Schedule the email-change notifications."""
    background_tasks.add_task(send_email_changed_task, old_email, new_email, username)
