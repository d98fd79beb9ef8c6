from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedNotice:
    recipient: str
    owner_id: str
    document_type: str
    locator: str
    transaction_id: str


class Notifier(Protocol):
    def document_issued(self, notice: IssuedNotice) -> None: ...


class LogNotifier:
    """Default notifier. Email delivery is wired in by the hosting application."""

    def document_issued(self, notice: IssuedNotice) -> None:
        logger.info(
            "Document issued: owner=%s type=%s recipient=%s locator=%s tx=%s",
            notice.owner_id,
            notice.document_type,
            notice.recipient,
            notice.locator,
            notice.transaction_id,
        )
