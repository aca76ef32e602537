"""dogwhistle.session.notifier

ROLE: Consent notification delivered as a log event and a bus message.

OUTPUTS:
  - Topic: session.notifications  Type: {"t_ns", "title", "body"}

LOG EVENTS:
  - module=session.notifier, event=notification, payload keys=title, body
"""

from __future__ import annotations

from typing import Any, Optional

from dogwhistle.core.clock import now_ns


class LogNotifier:
    def __init__(self, logger: Any, bus: Optional[Any] = None) -> None:
        self._logger = logger
        self._bus = bus

    def notify(self, title: str, body: str) -> None:
        self._logger.emit("info", "session.notifier", "notification", {"title": title, "body": body})
        if self._bus is not None:
            self._bus.publish("session.notifications", {"t_ns": now_ns(), "title": title, "body": body})
