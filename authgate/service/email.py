from __future__ import annotations

import asyncio
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from authgate.logging import get_logger
from authgate.service.credentials import Email, TwoFactorCode

logger = get_logger(__name__)


class EmailService:
    """Delivers second-factor codes by SMTP.

    Without an SMTP host the service runs in dev mode: nothing is sent and a
    redacted ``email_dev_mode`` event is logged instead.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Authgate",
        timeout_seconds: float = 30.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings) -> "EmailService":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.email_from_address,
            from_name=settings.email_from_name,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _send_email(self, recipient: Email, subject: str, text_body: str) -> bool:
        """Send a plain-text message. Returns True if it was handed to the relay."""
        if not self.is_configured:
            logger.info(
                "email_dev_mode",
                recipient_fingerprint=recipient.fingerprint,
                subject=subject,
            )
            return True

        to_email = recipient.expose()
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(
                    self.smtp_host, self.smtp_port, timeout=self.timeout_seconds
                ) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host,
                    self.smtp_port,
                    context=context,
                    timeout=self.timeout_seconds,
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                recipient_fingerprint=recipient.fingerprint,
                host=self.smtp_host,
                error=str(e),
            )
            return False
        except smtplib.SMTPException as e:
            logger.error(
                "email_smtp_error",
                recipient_fingerprint=recipient.fingerprint,
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        except (ssl.SSLError, OSError) as e:
            logger.error(
                "email_connect_failed",
                recipient_fingerprint=recipient.fingerprint,
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

        logger.info(
            "email_sent", recipient_fingerprint=recipient.fingerprint, subject=subject
        )
        return True

    async def send_two_factor_code(
        self, recipient: Email, code: TwoFactorCode, *, expires_in_seconds: int = 600
    ) -> bool:
        subject = "Your login code"
        minutes = max(1, expires_in_seconds // 60)
        text_body = (
            f"Your login code is {code.expose()}.\n\n"
            f"It expires in {minutes} minutes. If you did not try to sign in, "
            "you can ignore this message."
        )
        return await asyncio.to_thread(self._send_email, recipient, subject, text_body)
