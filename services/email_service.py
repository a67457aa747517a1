"""
Email service for password reset codes and notifications.
Uses fastapi-mail for async email sending.
"""
import html
from typing import Optional, TYPE_CHECKING

from fastapi_mail import MessageSchema, MessageType

from core.logger import logger
import config

if TYPE_CHECKING:
    from fastapi_mail import FastMail


class EmailService:
    """Service for sending emails via fastapi-mail."""

    @staticmethod
    def render_reset_code_email(code: str, full_name: Optional[str] = None) -> str:
        """HTML body for a password reset code."""
        greeting = f"Hello {html.escape(full_name)}," if full_name else "Hello,"
        return f"""
        <html>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                <h2 style="color: #1e3a8a;">{config.SMTP_FROM_NAME}</h2>
                <p>{greeting}</p>
                <p>Use this code to reset your password:</p>
                <div style="background-color: #f4f4f4; padding: 20px; text-align: center; margin: 20px 0; border-radius: 5px;">
                    <h1 style="color: #1e3a8a; font-size: 32px; margin: 0; letter-spacing: 5px;">{code}</h1>
                </div>
                <p>This code will expire in {config.RESET_CODE_TTL_MINUTES} minutes.</p>
                <p style="color: #666; font-size: 12px;">If you didn't request this code, please ignore this email.</p>
            </div>
        </body>
        </html>
        """

    @staticmethod
    async def send_html(to_email: str, subject: str, html_body: str, fm: "FastMail") -> bool:
        """
        Send an HTML email.

        Args:
            to_email: Recipient email address
            subject: Subject line
            html_body: HTML body
            fm: FastMail instance (from request.app.state.mail)

        Returns:
            True if sent successfully, False otherwise
        """
        message = MessageSchema(
            subject=subject,
            recipients=[to_email],
            body=html_body,
            subtype=MessageType.html,
        )
        try:
            await fm.send_message(message)
        except Exception as e:
            logger.error(f"Failed to send email to {to_email}: {e}", exc_info=True)
            return False
        logger.info(f"Email '{subject}' sent to {to_email}")
        return True

    @staticmethod
    async def send_reset_code_email(
        to_email: str, code: str, fm: "FastMail", full_name: Optional[str] = None
    ) -> bool:
        """Send a password reset code."""
        return await EmailService.send_html(
            to_email,
            f"Your password reset code - {config.SMTP_FROM_NAME}",
            EmailService.render_reset_code_email(code, full_name),
            fm,
        )
