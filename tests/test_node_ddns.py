from __future__ import annotations

import unittest
from typing import Any
from unittest import mock

import requests

from scripts.lifecycle.node_ddns import update_ddns


class StubEvents:
    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []

    def emit(self, event_type: str, message: str, **extra: Any) -> None:
        self.rows.append({"event": event_type, "message": message, **extra})


class UpdateDdnsTests(unittest.TestCase):
    def test_empty_url_is_skipped(self) -> None:
        events = StubEvents()
        with mock.patch("scripts.lifecycle.node_ddns.requests.get") as get:
            self.assertIsNone(update_ddns("", events=events))  # type: ignore[arg-type]
        get.assert_not_called()
        self.assertEqual(events.rows, [])

    def test_status_is_logged(self) -> None:
        events = StubEvents()
        resp = mock.Mock(status_code=200, reason="OK")
        with mock.patch("scripts.lifecycle.node_ddns.requests.get", return_value=resp) as get:
            status = update_ddns("https://dyn.example/update?h=mc", events=events)  # type: ignore[arg-type]
        self.assertEqual(status, 200)
        get.assert_called_once_with("https://dyn.example/update?h=mc", timeout=10.0)
        self.assertEqual(events.rows[-1]["event"], "ddns_update_result")

    def test_request_failure_is_not_fatal(self) -> None:
        events = StubEvents()
        with mock.patch(
            "scripts.lifecycle.node_ddns.requests.get",
            side_effect=requests.Timeout("timed out"),
        ):
            status = update_ddns("https://dyn.example/update", events=events)  # type: ignore[arg-type]
        self.assertIsNone(status)
        self.assertEqual(events.rows[-1]["event"], "ddns_update_failed")
        self.assertEqual(events.rows[-1]["level"], "warning")


if __name__ == "__main__":
    unittest.main()
