"""Email sender service - delivers HTML alert emails over SMTP."""
import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List

from ..config import Settings

logger = logging.getLogger(__name__)

SMTP_SSL_PORT = 465


@dataclass
class EmailConfig:
    """Where and as whom alert emails are sent."""
    host: str
    port: int = 587
    username: str = ""
    password: str = ""
    use_tls: bool = True
    from_address: str = ""
    timeout: float = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailConfig":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_address=settings.smtp_from,
        )

    @property
    def sender(self) -> str:
        return self.from_address or self.username


def split_recipients(to: str) -> List[str]:
    return [part.strip() for part in (to or "").split(",") if part.strip()]


class EmailSenderService:
    """Sends one HTML email per alert.

    ``send_email`` never raises: every failure is logged and reported as False.
    """

    def __init__(self, config: EmailConfig):
        self.config = config

    async def send_email(self, to: str, subject: str, html_body: str) -> bool:
        """Returns True once the server accepted the message."""
        config = self.config
        if not config.host:
            logger.warning(f"SMTP_HOST is not set; dropping email '{subject}'")
            return False

        recipients = split_recipients(to)
        if not recipients:
            logger.warning(f"Email '{subject}' has no recipients; dropping it")
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = config.sender
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(html_body, "html"))

        try:
            # smtplib blocks; keep it off the event loop
            await asyncio.to_thread(self._deliver, recipients, msg)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP login rejected for '{config.username}' at {config.host}: {e.smtp_code}")
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"SMTP server refused {', '.join(e.recipients)}")
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Could not send email via {config.host}:{config.port}: {type(e).__name__}: {e}")
            return False
        except Exception:
            logger.exception(f"Email '{subject}' failed unexpectedly")
            return False

        logger.info(f"Email '{subject}' sent to {len(recipients)} recipient(s)")
        return True

    def _deliver(self, recipients: List[str], msg: MIMEMultipart) -> None:
        config = self.config
        context = ssl.create_default_context()
        implicit_tls = config.port == SMTP_SSL_PORT

        if implicit_tls:
            server = smtplib.SMTP_SSL(config.host, config.port, timeout=config.timeout, context=context)
        else:
            server = smtplib.SMTP(config.host, config.port, timeout=config.timeout)

        with server:
            if config.use_tls and not implicit_tls:
                server.starttls(context=context)
            if config.username and config.password:
                server.login(config.username, config.password)
            server.sendmail(config.sender, recipients, msg.as_string())
