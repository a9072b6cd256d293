from __future__ import annotations

import os
import pathlib
import signal
import tempfile
import threading
import time
import unittest
from typing import Any
from unittest import mock

import requests

from scripts.lifecycle.models import (
    ChildProcessExited,
    ExternalTerminationRequested,
    IdleTimeoutReached,
    NodeConfig,
    PreemptionNoticed,
    UptimeExceeded,
)
from scripts.lifecycle.node_detection import (
    MIN_POLL_SECONDS,
    idle_limit_exceeded,
    idle_poll_period,
    poll_period,
    termination_scheduled,
)
from scripts.lifecycle.node_watchers import (
    TerminationSignalListener,
    wait_for_exit,
    watch_idle,
    watch_preemption,
    watch_uptime,
)


class StubEvents:
    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def emit(self, event_type: str, message: str, **extra: Any) -> None:
        with self._lock:
            self.rows.append({"event": event_type, "message": message, **extra})

    def names(self) -> list[str]:
        with self._lock:
            return [row["event"] for row in self.rows]


def _config(**overrides: Any) -> NodeConfig:
    values: dict[str, Any] = {
        "server_jar_url": "s3://bucket/server.jar",
        "eula_url": "s3://bucket/eula.txt",
        "data_url": "s3://bucket/data.tar.gz",
        "java_path": "/usr/bin/java",
    }
    values.update(overrides)
    return NodeConfig(**values)


def _response(status_code: int) -> mock.Mock:
    resp = mock.Mock()
    resp.status_code = status_code
    return resp


class DetectionTests(unittest.TestCase):
    def test_only_404_means_not_scheduled(self) -> None:
        self.assertFalse(termination_scheduled(404))
        self.assertTrue(termination_scheduled(200))
        self.assertTrue(termination_scheduled(500))

    def test_idle_poll_period_is_a_twelfth(self) -> None:
        self.assertEqual(idle_poll_period(14400.0), 1200.0)

    def test_zero_limits_poll_no_faster_than_floor(self) -> None:
        self.assertEqual(idle_poll_period(0.0), MIN_POLL_SECONDS)
        self.assertEqual(poll_period(0.0), MIN_POLL_SECONDS)
        self.assertEqual(poll_period(10.0), 10.0)

    def test_idle_limit_is_strict(self) -> None:
        self.assertFalse(idle_limit_exceeded(60.0, 60.0))
        self.assertTrue(idle_limit_exceeded(60.5, 60.0))


class IdleWatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.work_dir = pathlib.Path(self._tmp.name)
        self.events = StubEvents()
        self.sent: list[Any] = []

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_sends_idle_timeout_when_path_is_stale(self) -> None:
        watched = self.work_dir / "world" / "playerdata"
        watched.mkdir(parents=True)
        old = time.time() - 3600
        os.utime(watched, (old, old))
        config = _config(idle_watch_grace_seconds=0.0, max_idle_seconds=1.2)

        fired = watch_idle(
            config=config,
            work_dir=self.work_dir,
            send=self.sent.append,
            events=self.events,  # type: ignore[arg-type]
            stop=threading.Event(),
        )

        self.assertTrue(fired)
        self.assertEqual(len(self.sent), 1)
        self.assertIsInstance(self.sent[0], IdleTimeoutReached)
        self.assertGreater(self.sent[0].idle_seconds, 1.2)
        self.assertIn("idle_timeout", self.events.names())

    def test_fresh_path_does_not_fire_until_stopped(self) -> None:
        watched = self.work_dir / "world" / "playerdata"
        watched.mkdir(parents=True)
        config = _config(idle_watch_grace_seconds=0.0, max_idle_seconds=0.12)
        stop = threading.Event()
        timer = threading.Timer(0.2, stop.set)
        timer.start()

        fired = watch_idle(
            config=config,
            work_dir=self.work_dir,
            send=self.sent.append,
            events=self.events,  # type: ignore[arg-type]
            stop=stop,
            now=lambda: watched.stat().st_mtime + 0.05,
        )
        timer.cancel()

        self.assertFalse(fired)
        self.assertEqual(self.sent, [])
        self.assertIn("idle_sample", self.events.names())

    def test_missing_path_is_skipped_not_fatal(self) -> None:
        config = _config(idle_watch_grace_seconds=0.0, max_idle_seconds=0.12)
        stop = threading.Event()
        timer = threading.Timer(0.2, stop.set)
        timer.start()

        fired = watch_idle(
            config=config,
            work_dir=self.work_dir,
            send=self.sent.append,
            events=self.events,  # type: ignore[arg-type]
            stop=stop,
        )
        timer.cancel()

        self.assertFalse(fired)
        self.assertEqual(self.sent, [])
        self.assertIn("idle_sample_skipped", self.events.names())

    def test_zero_idle_limit_does_not_spin_on_missing_path(self) -> None:
        config = _config(idle_watch_grace_seconds=0.0, max_idle_seconds=0.0)
        stop = threading.Event()
        timer = threading.Timer(0.2, stop.set)
        timer.start()

        fired = watch_idle(
            config=config,
            work_dir=self.work_dir,
            send=self.sent.append,
            events=self.events,  # type: ignore[arg-type]
            stop=stop,
        )
        timer.cancel()

        self.assertFalse(fired)
        self.assertLess(self.events.names().count("idle_sample_skipped"), 10)

    def test_stop_during_grace_period_exits_quietly(self) -> None:
        stop = threading.Event()
        stop.set()
        fired = watch_idle(
            config=_config(idle_watch_grace_seconds=600.0),
            work_dir=self.work_dir,
            send=self.sent.append,
            events=self.events,  # type: ignore[arg-type]
            stop=stop,
        )
        self.assertFalse(fired)
        self.assertNotIn("idle_watch_start", self.events.names())


class UptimeWatcherTests(unittest.TestCase):
    def test_sends_uptime_exceeded_after_limit(self) -> None:
        sent: list[Any] = []
        events = StubEvents()
        fired = watch_uptime(
            config=_config(max_uptime_seconds=0.01),
            send=sent.append,
            events=events,  # type: ignore[arg-type]
            stop=threading.Event(),
        )
        self.assertTrue(fired)
        self.assertEqual(sent, [UptimeExceeded(uptime_seconds=0.01)])

    def test_stopped_before_limit_sends_nothing(self) -> None:
        sent: list[Any] = []
        stop = threading.Event()
        stop.set()
        fired = watch_uptime(
            config=_config(max_uptime_seconds=3600.0),
            send=sent.append,
            events=StubEvents(),  # type: ignore[arg-type]
            stop=stop,
        )
        self.assertFalse(fired)
        self.assertEqual(sent, [])


class PreemptionWatcherTests(unittest.TestCase):
    def test_polls_until_notice_and_survives_request_errors(self) -> None:
        sent: list[Any] = []
        events = StubEvents()
        responses = [
            _response(404),
            requests.ConnectionError("metadata unreachable"),
            _response(200),
        ]
        with mock.patch(
            "scripts.lifecycle.node_watchers.requests.get", side_effect=responses
        ) as get:
            fired = watch_preemption(
                url="http://metadata/termination-time",
                send=sent.append,
                events=events,  # type: ignore[arg-type]
                stop=threading.Event(),
                poll_seconds=0.0,
                timeout_seconds=0.5,
            )
        self.assertTrue(fired)
        self.assertEqual(sent, [PreemptionNoticed(status_code=200)])
        self.assertEqual(get.call_count, 3)
        get.assert_called_with("http://metadata/termination-time", timeout=0.5)
        self.assertIn("preemption_poll_failed", events.names())

    def test_zero_poll_interval_is_rate_limited(self) -> None:
        stop = threading.Event()
        timer = threading.Timer(0.2, stop.set)
        timer.start()
        with mock.patch(
            "scripts.lifecycle.node_watchers.requests.get", return_value=_response(404)
        ) as get:
            fired = watch_preemption(
                url="http://metadata/termination-time",
                send=lambda event: None,
                events=StubEvents(),  # type: ignore[arg-type]
                stop=stop,
                poll_seconds=0.0,
            )
        timer.cancel()
        self.assertFalse(fired)
        self.assertLess(get.call_count, 10)

    def test_stop_ends_polling(self) -> None:
        stop = threading.Event()
        stop.set()
        with mock.patch("scripts.lifecycle.node_watchers.requests.get") as get:
            fired = watch_preemption(
                url="http://metadata/termination-time",
                send=lambda event: None,
                events=StubEvents(),  # type: ignore[arg-type]
                stop=stop,
            )
        self.assertFalse(fired)
        get.assert_not_called()


class ExitWatcherTests(unittest.TestCase):
    def test_reports_exit_code(self) -> None:
        server = mock.Mock()
        server.wait.return_value = -15
        sent: list[Any] = []
        events = StubEvents()
        wait_for_exit(server=server, send=sent.append, events=events)  # type: ignore[arg-type]
        self.assertEqual(sent, [ChildProcessExited(exit_code=-15)])
        self.assertIn("SIGTERM", events.rows[0]["message"])


class TerminationSignalListenerTests(unittest.TestCase):
    def test_repeated_signals_produce_one_event(self) -> None:
        sent: list[Any] = []
        listener = TerminationSignalListener(send=sent.append, events=StubEvents())  # type: ignore[arg-type]
        listener._handle(signal.SIGTERM, None)
        listener._handle(signal.SIGINT, None)

        fired = listener.listen(threading.Event())

        self.assertTrue(fired)
        self.assertEqual(sent, [ExternalTerminationRequested(signal_name="SIGTERM")])

    def test_listen_returns_when_stopped(self) -> None:
        sent: list[Any] = []
        listener = TerminationSignalListener(send=sent.append, events=StubEvents())  # type: ignore[arg-type]
        stop = threading.Event()
        stop.set()
        self.assertFalse(listener.listen(stop))
        self.assertEqual(sent, [])

    def test_install_registers_handlers(self) -> None:
        listener = TerminationSignalListener(send=lambda event: None, events=StubEvents())  # type: ignore[arg-type]
        with mock.patch("scripts.lifecycle.node_watchers.signal.signal") as register:
            listener.install()
        registered = {call.args[0] for call in register.call_args_list}
        self.assertEqual(registered, {signal.SIGTERM, signal.SIGINT})


if __name__ == "__main__":
    unittest.main()
