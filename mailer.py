import logging
import smtplib
from email.message import EmailMessage

from fastapi import Depends

from config import Settings, get_settings
from errors import ErrorResponse

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(self, settings: Settings):
        self.settings = settings

    def send(self, to: str, subject: str, text: str) -> None:
        s = self.settings
        if not s.smtp_host:
            raise ErrorResponse("Email could not be sent", 500)

        msg = EmailMessage()
        msg["From"] = f"{s.smtp_from_name} <{s.smtp_from_address}>"
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text)

        try:
            with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=10) as smtp:
                if s.smtp_username:
                    smtp.starttls()
                    smtp.login(s.smtp_username, s.smtp_password or "")
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Sending mail to %s failed: %s", to, e)
            raise ErrorResponse("Email could not be sent", 500)
        logger.info("Message sent to %s: %s", to, subject)


def get_mailer(settings: Settings = Depends(get_settings)) -> Mailer:
    return Mailer(settings)
