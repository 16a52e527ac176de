from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Any

from harvester.core.config import NotificationConfig

logger = logging.getLogger("notify")

KIND_TITLES = {
    "source_duplicates": "Duplicates found on the source",
    "name_collisions": "Name collisions after catalog normalization",
    "catalog_duplicates": "Duplicates found on the data portal",
}


class NullNotifier:
    def notify(self, kind: str, groups: list[dict[str, Any]]) -> None:
        logger.debug("notification_skipped %s (%d groups)", kind, len(groups))


def render_body(kind: str, groups: list[dict[str, Any]]) -> str:
    lines = [KIND_TITLES.get(kind, kind), ""]
    for group in groups:
        lines.append(f"- {group['name']}")
        for member in group.get("members", []):
            lines.append(f"    {member}")
    lines.append("")
    lines.append("These files were not synchronized; fix them at the source.")
    return "\n".join(lines)


class EmailNotifier:
    """Best-effort SMTP notifier: delivery problems are logged, never raised."""

    def __init__(self, cfg: NotificationConfig, timeout: int = 30):
        self.cfg = cfg
        self.timeout = timeout

    def build_message(self, kind: str, groups: list[dict[str, Any]]) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = f"{self.cfg.subject_prefix} {KIND_TITLES.get(kind, kind)}".strip()
        msg["From"] = self.cfg.sender
        msg["To"] = ", ".join(self.cfg.recipients)
        msg.set_content(render_body(kind, groups))
        return msg

    def notify(self, kind: str, groups: list[dict[str, Any]]) -> None:
        if not groups or not self.cfg.recipients:
            return
        try:
            msg = self.build_message(kind, groups)
            with smtplib.SMTP(self.cfg.smtp_host, self.cfg.smtp_port, timeout=self.timeout) as smtp:
                if self.cfg.use_tls:
                    smtp.starttls()
                if self.cfg.username:
                    smtp.login(self.cfg.username, self.cfg.password)
                smtp.send_message(msg)
            logger.info("notification_sent %s to %s", kind, msg["To"])
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("notification_failed %s: %s", kind, e)


def build_notifier(cfg: NotificationConfig):
    if cfg.enabled and cfg.smtp_host:
        return EmailNotifier(cfg)
    return NullNotifier()
