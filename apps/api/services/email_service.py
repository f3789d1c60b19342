"""
Email Service

Sends account emails over SMTP. With EMAIL_ENABLED off (the default) it
only logs what it would have sent, so callers must treat delivery as
best-effort.
"""

import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional
from core.config import settings
import logging

logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending emails"""

    def __init__(self):
        self.smtp_server = settings.SMTP_SERVER
        self.smtp_port = settings.SMTP_PORT
        self.smtp_username = settings.SMTP_USERNAME
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.FROM_EMAIL
        self.from_name = settings.FROM_NAME
        self.enabled = settings.EMAIL_ENABLED

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """
        Send an email.

        Returns True if sent successfully, False otherwise.
        """
        if not self.enabled:
            logger.info(f"Email disabled, would send to {to_email}: {subject}")
            return False

        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = f"{self.from_name} <{self.from_email}>"
            msg['To'] = to_email

            if text_content:
                msg.attach(MIMEText(text_content, 'plain'))
            msg.attach(MIMEText(html_content, 'html'))

            if self.smtp_username and self.smtp_password:
                server = smtplib.SMTP(self.smtp_server, self.smtp_port)
                server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)
                server.quit()
            else:
                # Local development - just log
                logger.info(f"Would send email to {to_email}: {subject}")

            return True

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Error sending email to {to_email}: {str(e)}")
            return False

    def send_account_credentials(self, to_email: str, first_name: str, temporary_password: str, tier: str) -> bool:
        """
        Send the placeholder password generated for a checkout-created account.

        The password is never logged.
        """
        login_url = f"{settings.WEB_APP_BASE_URL.rstrip('/')}/auth/login"
        subject = "Welcome to BrainBooster! Your login details"
        html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
          <h1 style="color: #4F46E5;">Welcome to BrainBooster!</h1>
          <p>Hi {first_name},</p>
          <p>Your {tier} subscription is active. Sign in with this temporary password. To choose your own, use "Forgot password" on the login page:</p>
          <p style="font-size: 18px; font-family: monospace;">{temporary_password}</p>
          <a href="{login_url}" style="display: inline-block; background: #4F46E5; color: white; padding: 12px 24px; text-decoration: none; border-radius: 8px; margin: 16px 0;">Login to Dashboard</a>
          <hr style="border: none; border-top: 1px solid #eee; margin: 24px 0;" />
          <p style="color: #999; font-size: 12px;">BrainBooster - Online Tutoring</p>
        </div>
        """
        text = (
            f"Hi {first_name},\n\nYour {tier} subscription is active.\n"
            f"Temporary password: {temporary_password}\nLogin: {login_url}\n"
            "To choose your own password, use \"Forgot password\" on the login page.\n"
        )
        return self.send_email(to_email, subject, html, text)

    def send_password_reset(self, to_email: str, first_name: Optional[str], reset_url: str) -> bool:
        """Send a password reset link. The link carries the token, so it is never logged."""
        subject = "Reset Your Password - BrainBooster"
        greeting = f"Hi {first_name}," if first_name else "Hi,"
        html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
          <h1 style="color: #4F46E5;">Reset your password</h1>
          <p>{greeting}</p>
          <p>We received a request to reset your BrainBooster password. This link expires in 1 hour.</p>
          <a href="{reset_url}" style="display: inline-block; background: #4F46E5; color: white; padding: 12px 24px; text-decoration: none; border-radius: 8px; margin: 16px 0;">Reset Password</a>
          <p style="color: #666; font-size: 14px;">If you didn't request this, you can ignore this email.</p>
          <hr style="border: none; border-top: 1px solid #eee; margin: 24px 0;" />
          <p style="color: #999; font-size: 12px;">BrainBooster - Online Tutoring</p>
        </div>
        """
        text = (
            f"{greeting}\n\nReset your BrainBooster password (link expires in 1 hour):\n{reset_url}\n\n"
            "If you didn't request this, you can ignore this email.\n"
        )
        return self.send_email(to_email, subject, html, text)
