"""
Unit Tests: Uncaught Exception Handling
=======================================

Tests covering:
1. Alerts and SIGTERM on uncaught thread and event loop errors
2. One shutdown request per process
3. Hook installation and restore
"""

import asyncio
import os
import signal
import sys
import threading

import pytest
from unittest.mock import Mock

from portfolio_cms.main import CrashHandler
from portfolio_cms.monitoring import AlertLog


@pytest.fixture
def alerts():
    return AlertLog()


@pytest.fixture
def kill():
    return Mock()


@pytest.fixture
def crash_handler(alerts, kill):
    handler = CrashHandler(alerts, kill=kill)
    yield handler
    handler.uninstall()


class TestCrashHandler:
    """Test suite for CrashHandler"""

    # ===================
    # Shutdown Tests
    # ===================

    def test_thread_crash_alerts_and_terminates(self, crash_handler, alerts, kill):
        # Arrange
        def worker():
            raise RuntimeError("worker exploded")

        crash_handler.install()

        # Act
        thread = threading.Thread(target=worker, name="image-worker")
        thread.start()
        thread.join()

        # Assert
        kill.assert_called_once_with(os.getpid(), signal.SIGTERM)
        alert = alerts.recent(1)[0]
        assert alert["source"] == "thread"
        assert "image-worker" in alert["message"]
        assert "worker exploded" in alert["message"]
        assert crash_handler.shutdown_requested is True

    @pytest.mark.asyncio
    async def test_event_loop_error_terminates(self, crash_handler, alerts, kill):
        loop = asyncio.get_running_loop()

        def failing_callback():
            raise ValueError("callback failed")

        crash_handler.install(loop)
        try:
            loop.call_soon(failing_callback)
            await asyncio.sleep(0.01)
        finally:
            loop.set_exception_handler(None)

        kill.assert_called_once_with(os.getpid(), signal.SIGTERM)
        assert alerts.recent(1)[0]["source"] == "event_loop"

    def test_shutdown_requested_once(self, crash_handler, alerts, kill):
        loop = Mock()

        crash_handler.loop_exception_handler(loop, {"message": "Task exception was never retrieved", "exception": RuntimeError("a")})
        crash_handler.loop_exception_handler(loop, {"message": "Task exception was never retrieved", "exception": RuntimeError("b")})

        assert kill.call_count == 1
        assert len(alerts) == 2
        assert loop.default_exception_handler.call_count == 2

    def test_disabled_shutdown_only_alerts(self, alerts, kill):
        handler = CrashHandler(alerts, shutdown_on_crash=False, kill=kill)

        handler.report("Uncaught exception: RuntimeError: boom", source="process")

        kill.assert_not_called()
        assert len(alerts) == 1

    def test_default_kill_is_os_kill(self, alerts, monkeypatch):
        sent = []
        monkeypatch.setattr(os, "kill", lambda pid, sig: sent.append((pid, sig)))
        handler = CrashHandler(alerts)

        handler.report("Uncaught exception: RuntimeError: boom", source="process")

        assert sent == [(os.getpid(), signal.SIGTERM)]

    # ===================
    # Hook Tests
    # ===================

    def test_keyboard_interrupt_is_not_a_crash(self, monkeypatch, alerts, kill):
        previous = Mock()
        monkeypatch.setattr(sys, "excepthook", previous)
        handler = CrashHandler(alerts, kill=kill)

        handler.install()
        try:
            sys.excepthook(KeyboardInterrupt, KeyboardInterrupt(), None)
        finally:
            handler.uninstall()

        kill.assert_not_called()
        assert len(alerts) == 0
        previous.assert_called_once()

    def test_uninstall_restores_hooks(self, alerts, kill):
        original_excepthook = sys.excepthook
        original_thread_excepthook = threading.excepthook
        handler = CrashHandler(alerts, kill=kill)

        handler.install()
        assert sys.excepthook == handler.excepthook
        handler.uninstall()

        assert sys.excepthook is original_excepthook
        assert threading.excepthook is original_thread_excepthook
