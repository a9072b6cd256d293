from __future__ import annotations

import os
import pathlib
import stat
import tempfile
import unittest
from unittest import mock

import scripts.bootstrap_initscript as bootstrap


class BootstrapInitscriptTests(unittest.TestCase):
    def test_render_default_initscript(self) -> None:
        script = bootstrap.render_initscript()
        self.assertTrue(script.startswith("#!/bin/bash"))
        self.assertIn("# chkconfig: 3 99 10", script)
        self.assertIn("killall -TERM spot-node", script)
        self.assertIn("sleep 30", script)
        self.assertIn("/var/lock/subsys/spot-node-stopper", script)
        self.assertNotIn("{{", script)

    def test_render_rejects_unsafe_names(self) -> None:
        with self.assertRaises(bootstrap.BootstrapError):
            bootstrap.render_initscript(process_name="spot-node; rm -rf /")
        with self.assertRaises(bootstrap.BootstrapError):
            bootstrap.render_initscript(stop_wait_seconds=-1)

    def test_render_template_reports_missing_values(self) -> None:
        with self.assertRaises(bootstrap.BootstrapError) as ctx:
            bootstrap.render_template(bootstrap.INITSCRIPT_TEMPLATE, {"SERVICE_NAME": "x"})
        self.assertIn("PROCESS_NAME", str(ctx.exception))

    def test_main_writes_executable_file_once(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            output = pathlib.Path(tmp) / "init.d" / "spot-node-stopper"
            rc = bootstrap.main(["--output", str(output), "--stop-wait-seconds", "45"])
            self.assertEqual(rc, 0)
            self.assertIn("sleep 45", output.read_text(encoding="utf-8"))
            self.assertTrue(os.stat(output).st_mode & stat.S_IXUSR)

            output.write_text("custom", encoding="utf-8")
            rc = bootstrap.main(["--output", str(output)])
            self.assertEqual(rc, 0)
            self.assertEqual(output.read_text(encoding="utf-8"), "custom")

    def test_main_returns_2_on_missing_template(self) -> None:
        with mock.patch(
            "scripts.bootstrap_initscript.templates_dir",
            return_value=pathlib.Path("/nonexistent/templates"),
        ):
            rc = bootstrap.main([])
        self.assertEqual(rc, 2)


if __name__ == "__main__":
    unittest.main()
