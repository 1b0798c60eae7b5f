"""Tests for the logging notifier."""

import logging

import pytest

from src.core.notifier import LoggingNotifier


class TestLoggingNotifier:
    def test_logs_each_event(self, caplog: pytest.LogCaptureFixture) -> None:
        n = LoggingNotifier()
        with caplog.at_level(logging.INFO, logger="src.core.notifier"):
            n.notify_quote_generated(1)
            n.notify_assignment(2)
            n.notify_payment_processed(3)
        assert caplog.messages == [
            "notify: quote 1 generated",
            "notify: assignment 2 proposed",
            "notify: payment 3 processed",
        ]
