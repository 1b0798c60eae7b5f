"""Outbound notification contract.

Delivery (SMS, messaging, email) lives outside the engine. The workflow calls a
``Notifier`` after each committed stage; ``LoggingNotifier`` is the stand-in
used by the CLI and tests.
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Base class for anything that announces engine results."""

    @abstractmethod
    def notify_assignment(self, assignment_id: int) -> None:
        """An assignment was proposed to a worker."""

    @abstractmethod
    def notify_quote_generated(self, quote_id: int) -> None:
        """A quote was stored for a job."""

    @abstractmethod
    def notify_payment_processed(self, payment_id: int) -> None:
        """A payment was calculated for a completed assignment."""


class LoggingNotifier(Notifier):
    """Writes each event to the log and delivers nothing."""

    def notify_assignment(self, assignment_id: int) -> None:
        logger.info("notify: assignment %d proposed", assignment_id)

    def notify_quote_generated(self, quote_id: int) -> None:
        logger.info("notify: quote %d generated", quote_id)

    def notify_payment_processed(self, payment_id: int) -> None:
        logger.info("notify: payment %d processed", payment_id)
