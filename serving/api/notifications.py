"""Per-request collector for agent-facing toast notifications."""
from __future__ import annotations

import logging
from typing import List

from models import Notification

logger = logging.getLogger("proptor-risk")


class NotificationChannel:
    def __init__(self):
        self.messages: List[Notification] = []

    def notify(self, title: str, description: str, variant: str = "default") -> Notification:
        notification = Notification(title=title, description=description, variant=variant)
        self.messages.append(notification)
        logger.info(f"notification title={title!r} variant={variant}")
        return notification
