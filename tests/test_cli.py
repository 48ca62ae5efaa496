"""
Tests for the CLI commands.

Uses Python's unittest module.
Tests argument parsing, command output and exit codes.
"""

from __future__ import annotations

import io
import json
import os
import shutil
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest.mock import patch

import yaml

from kontext.cli import (
    EXIT_INTERRUPTED,
    EXIT_OK,
    EXIT_SYSTEM_ERROR,
    EXIT_USER_ERROR,
    create_parser,
    format_table,
    run,
)
from kontext.errors import RefreshActionError

KUBECONFIG = {
    "apiVersion": "v1",
    "clusters": [
        {"cluster": {"server": "https://a.example.com"}, "name": "a"},
        {"cluster": {"server": "https://a.example.com"}, "name": "a-copy"},
        {"cluster": {"server": "https://b.example.com"}, "name": "b"},
    ],
    "contexts": [
        {"context": {"cluster": "a", "namespace": "web", "user": "static"}, "name": "alpha"},
        {"context": {"cluster": "a-copy", "user": "static"}, "name": "alpha-copy"},
        {"context": {"cluster": "b", "user": "oidc"}, "name": "beta"},
    ],
    "current-context": "alpha",
    "kind": "Config",
    "preferences": {},
    "users": [
        {"name": "static", "user": {"token": "t"}},
        {
            "name": "oidc",
            "user": {
                "auth-provider": {
                    "config": {
                        "client-id": "k8s",
                        "idp-issuer-url": "https://idp.example.com",
                        "refresh-token": "r",
                    },
                    "name": "oidc",
                }
            },
        },
    ],
}


class TestArgumentParser(unittest.TestCase):
    """Tests for CLI argument parsing."""

    def setUp(self) -> None:
        """Set up parser for tests."""
        self.parser = create_parser()

    def test_version_argument(self) -> None:
        """Test --version argument."""
        with redirect_stdout(io.StringIO()):
            with self.assertRaises(SystemExit) as cm:
                self.parser.parse_args(["--version"])
        self.assertEqual(cm.exception.code, 0)

    def test_no_command_defaults(self) -> None:
        args = self.parser.parse_args([])
        self.assertEqual(args.verbose, 0)
        self.assertFalse(args.quiet)
        self.assertIsNone(args.kubeconfig)

    def test_verbose_flag(self) -> None:
        self.assertEqual(self.parser.parse_args(["-vv"]).verbose, 2)

    def test_global_options(self) -> None:
        args = self.parser.parse_args(["--kubeconfig", "/k", "--config", "/c", "list"])
        self.assertEqual(args.kubeconfig, "/k")
        self.assertEqual(args.config, "/c")

    def test_list_output(self) -> None:
        self.assertEqual(self.parser.parse_args(["list"]).output, "table")
        self.assertEqual(self.parser.parse_args(["list", "-o", "json"]).output, "json")

    def test_invalid_list_output(self) -> None:
        with redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                self.parser.parse_args(["list", "--output", "xml"])

    def test_refresh_force(self) -> None:
        args = self.parser.parse_args(["refresh", "dev", "--force"])
        self.assertEqual(args.name, "dev")
        self.assertTrue(args.force)

    def test_remove_requires_name(self) -> None:
        with redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                self.parser.parse_args(["remove"])

    def test_remove_many(self) -> None:
        self.assertEqual(self.parser.parse_args(["rm", "a", "b"]).names, ["a", "b"])

    def test_dedupe_dry_run(self) -> None:
        self.assertTrue(self.parser.parse_args(["dedupe", "--dry-run"]).dry_run)


class TestFormatTable(unittest.TestCase):
    def test_alignment(self) -> None:
        table = format_table(["A", "LONGER"], [["x", None], ["yyyy", "z"]])
        self.assertEqual(table.splitlines(), ["A      LONGER", "x", "yyyy   z"])


class CliTestCase(unittest.TestCase):
    """Base class running the CLI against a temporary kubeconfig."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "kubeconfig"
        self.path.write_text(yaml.safe_dump(KUBECONFIG, sort_keys=False))
        self.settings_path = Path(self.temp_dir) / "settings.yaml"
        environ = {k: v for k, v in os.environ.items() if not k.startswith("KONTEXT_")}
        self.env = patch.dict(os.environ, environ, clear=True)
        self.env.start()

    def tearDown(self) -> None:
        self.env.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def cli(self, *argv: str) -> tuple[int, str, str]:
        stdout, stderr = io.StringIO(), io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            code = run(
                ["--kubeconfig", str(self.path), "--config", str(self.settings_path), *argv]
            )
        return code, stdout.getvalue(), stderr.getvalue()

    def on_disk(self) -> dict:
        return yaml.safe_load(self.path.read_text())


class TestCommands(CliTestCase):
    """Tests for individual commands."""

    def test_list_table(self) -> None:
        code, out, _ = self.cli("list")

        self.assertEqual(code, EXIT_OK)
        lines = out.splitlines()
        self.assertTrue(lines[0].startswith("CURRENT"))
        self.assertTrue(lines[1].startswith("*"))
        self.assertIn("alpha", lines[1])

    def test_list_json(self) -> None:
        code, out, _ = self.cli("list", "--output", "json")

        self.assertEqual(code, EXIT_OK)
        data = json.loads(out)
        self.assertEqual([c["name"] for c in data], ["alpha", "alpha-copy", "beta"])
        self.assertTrue(data[0]["current"])
        self.assertEqual(data[0]["namespace"], "web")

    def test_current(self) -> None:
        code, out, _ = self.cli("current")
        self.assertEqual(code, EXIT_OK)
        self.assertEqual(out.strip(), "alpha")

    def test_select(self) -> None:
        code, _, _ = self.cli("select", "beta")
        self.assertEqual(code, EXIT_OK)
        self.assertEqual(self.on_disk()["current-context"], "beta")

    def test_select_unknown(self) -> None:
        before = self.path.read_text()
        code, _, err = self.cli("select", "ghost")

        self.assertEqual(code, EXIT_USER_ERROR)
        self.assertIn("Context not found: 'ghost'", err)
        self.assertEqual(self.path.read_text(), before)

    def test_status(self) -> None:
        code, out, _ = self.cli("status", "alpha")
        self.assertEqual(code, EXIT_OK)
        self.assertIn("Staleness:   unknown", out)
        self.assertIn("Refreshable: no", out)

    def test_refresh_static_token(self) -> None:
        code, _, err = self.cli("refresh", "alpha")
        self.assertEqual(code, EXIT_USER_ERROR)
        self.assertIn("cannot be refreshed", err)

    def test_refresh_failure(self) -> None:
        before = self.path.read_text()
        with patch(
            "kontext.credentials.actions.OidcRefreshAction.__call__",
            side_effect=RefreshActionError("invalid_grant"),
        ):
            code, _, err = self.cli("refresh", "beta")

        self.assertEqual(code, EXIT_SYSTEM_ERROR)
        self.assertIn("invalid_grant", err)
        self.assertEqual(self.path.read_text(), before)

    def test_remove(self) -> None:
        code, out, _ = self.cli("remove", "beta")

        self.assertEqual(code, EXIT_OK)
        self.assertIn("Removed context 'beta'", out)
        self.assertIn("Removed unused user 'oidc'", out)
        self.assertNotIn("b", [c["name"] for c in self.on_disk()["clusters"]])

    def test_remove_unknown(self) -> None:
        before = self.path.read_text()
        code, _, err = self.cli("remove", "beta", "ghost")

        self.assertEqual(code, EXIT_USER_ERROR)
        self.assertIn("ghost", err)
        self.assertEqual(self.path.read_text(), before)

    def test_dedupe_dry_run(self) -> None:
        before = self.path.read_text()
        code, out, _ = self.cli("dedupe", "--dry-run")

        self.assertEqual(code, EXIT_OK)
        self.assertIn("Would merge alpha-copy into 'alpha'", out)
        self.assertEqual(self.path.read_text(), before)

    def test_dedupe(self) -> None:
        code, out, _ = self.cli("dedupe")

        self.assertEqual(code, EXIT_OK)
        self.assertIn("Merged alpha-copy into 'alpha'", out)
        document = self.on_disk()
        self.assertEqual([c["name"] for c in document["contexts"]], ["alpha", "beta"])
        self.assertEqual([c["name"] for c in document["clusters"]], ["a", "b"])

    def test_quiet_suppresses_messages(self) -> None:
        code, out, _ = self.cli("-q", "select", "beta")
        self.assertEqual(code, EXIT_OK)
        self.assertEqual(out, "")

    def test_info(self) -> None:
        code, out, _ = self.cli("info")
        self.assertEqual(code, EXIT_OK)
        self.assertIn(f"Kubeconfig:        {self.path}", out)
        self.assertIn("Refresh timeout:   30s", out)


class TestExitCodes(CliTestCase):
    """Tests for error handling in run()."""

    def test_missing_kubeconfig(self) -> None:
        self.path.unlink()
        code, _, err = self.cli("list")
        self.assertEqual(code, EXIT_SYSTEM_ERROR)
        self.assertIn("Kubeconfig not found", err)

    def test_malformed_kubeconfig(self) -> None:
        self.path.write_text("contexts: [unclosed")
        code, _, _ = self.cli("list")
        self.assertEqual(code, EXIT_SYSTEM_ERROR)

    def test_invalid_settings(self) -> None:
        self.settings_path.write_text("kontext:\n  log_level: LOUD\n")
        code, _, err = self.cli("list")
        self.assertEqual(code, EXIT_SYSTEM_ERROR)
        self.assertIn("Configuration error", err)

    def test_invalid_environment_setting(self) -> None:
        with patch.dict(os.environ, {"KONTEXT_EXPIRY_MARGIN": "soon"}):
            code, _, _ = self.cli("list")
        self.assertEqual(code, EXIT_SYSTEM_ERROR)

    def test_interrupted(self) -> None:
        with patch("kontext.cli.Registry.list_contexts", side_effect=KeyboardInterrupt):
            code, _, _ = self.cli("list")
        self.assertEqual(code, EXIT_INTERRUPTED)

    def test_no_command_prints_help(self) -> None:
        stdout = io.StringIO()
        with redirect_stdout(stdout):
            code = run([])
        self.assertEqual(code, EXIT_OK)
        self.assertIn("usage: kontext", stdout.getvalue())


if __name__ == "__main__":
    unittest.main()
