from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage

from flask import Flask, current_app

logger = logging.getLogger(__name__)


class MailError(RuntimeError):
    pass


@dataclass(frozen=True)
class Mail:
    to: tuple[str, ...]
    subject: str
    body: str


class Mailer:
    def send(self, mail: Mail) -> None:
        raise NotImplementedError


@dataclass
class MemoryMailer(Mailer):
    """Keeps every mail in `outbox` (tests)."""

    outbox: list[Mail] = field(default_factory=list)

    def send(self, mail: Mail) -> None:
        self.outbox.append(mail)


class LogMailer(Mailer):
    def send(self, mail: Mail) -> None:
        logger.info("MAIL (not delivered): to=%s subject=%r", ", ".join(mail.to), mail.subject)


@dataclass(frozen=True)
class SmtpMailer(Mailer):
    host: str
    port: int
    sender: str
    username: str = ""
    password: str = ""
    starttls: bool = True

    def send(self, mail: Mail) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = ", ".join(mail.to)
        msg["Subject"] = mail.subject
        msg.set_content(mail.body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                if self.starttls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (OSError, smtplib.SMTPException) as e:
            raise MailError(f"Sending mail to {msg['To']} failed: {e}") from e
        logger.info("MAIL sent: to=%s subject=%r", msg["To"], mail.subject)


def mailer_from_config(config: dict) -> Mailer:
    backend = (config.get("MAIL_BACKEND") or "log").strip().lower()
    if backend == "smtp":
        host = (config.get("SMTP_HOST") or "").strip()
        if not host:
            raise MailError("MAIL_BACKEND=smtp requires SMTP_HOST.")
        return SmtpMailer(
            host=host,
            port=int(config.get("SMTP_PORT") or 587),
            sender=(config.get("MAIL_FROM") or "").strip(),
            username=(config.get("SMTP_USERNAME") or "").strip(),
            password=config.get("SMTP_PASSWORD") or "",
            starttls=bool(config.get("SMTP_STARTTLS", True)),
        )
    if backend == "memory":
        return MemoryMailer()
    return LogMailer()


def init_mailer(app: Flask) -> None:
    app.extensions["mailer"] = mailer_from_config(app.config)


def send_mail(to: str | list[str] | tuple[str, ...], subject: str, body: str) -> None:
    recipients = (to,) if isinstance(to, str) else tuple(to)
    recipients = tuple(r for r in recipients if r)
    if not recipients:
        return
    mailer: Mailer = current_app.extensions["mailer"]
    mailer.send(Mail(to=recipients, subject=subject, body=body))
