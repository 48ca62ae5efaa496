"""
Tests for the context registry.

Uses Python's unittest module. Each test works on a kubeconfig in a
temporary directory and checks both the result and the file on disk.
"""

from __future__ import annotations

import shutil
import tempfile
import unittest
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import yaml

from kontext.config.settings import Settings
from kontext.credentials import CredentialRefresher, RefreshedCredential, Staleness
from kontext.errors import (
    AuthProviderUnsupportedError,
    ConfigNotFoundError,
    ConfigWriteError,
    ContextNotFoundError,
    RefreshActionError,
    RefreshFailedError,
)
from kontext.kubeconfig.dedup import DuplicateGroup
from kontext.registry import ContextSummary, Registry

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)
EXPIRED_ID_TOKEN = "eyJhbGciOiAibm9uZSJ9.eyJleHAiOiAxNzY4NDc3MjAwfQ.sig"  # exp 2026-01-15T11:40Z
NEW_ID_TOKEN = "eyJhbGciOiAibm9uZSJ9.eyJleHAiOiAxNzY4NDg0NDAwfQ.sig"  # exp 2026-01-15T13:40Z

KUBECONFIG = f"""\
apiVersion: v1
clusters:
- cluster:
    server: https://dev.example.com
  name: dev-cluster
- cluster:
    server: https://prod.example.com
  name: prod-cluster
- cluster:
    server: https://dev.example.com
  name: dev-cluster-copy
contexts:
- context:
    cluster: dev-cluster
    namespace: web
    user: dev-oidc
  name: dev
- context:
    cluster: prod-cluster
    user: prod-token
  name: prod
- context:
    cluster: dev-cluster-copy
    user: dev-oidc-copy
  name: dev2
- context:
    cluster: prod-cluster
    user: dev-oidc
  name: prod-oidc
current-context: dev
kind: Config
preferences: {{}}
users:
- name: dev-oidc
  user:
    auth-provider:
      config:
        client-id: kubernetes
        id-token: {EXPIRED_ID_TOKEN}
        idp-issuer-url: https://idp.example.com
        refresh-token: r1
      name: oidc
- name: prod-token
  user:
    token: static-token
- name: dev-oidc-copy
  user:
    auth-provider:
      config:
        client-id: kubernetes
        idp-issuer-url: https://idp.example.com
        refresh-token: r1
      name: oidc
"""


class RegistryTestCase(unittest.TestCase):
    """Base class writing the sample kubeconfig to a temporary directory."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "config"
        self.path.write_text(KUBECONFIG, encoding="utf-8")
        self.action = MagicMock(
            return_value=RefreshedCredential(
                token=NEW_ID_TOKEN,
                expiry=NOW + timedelta(hours=1, minutes=40),
                extra={"refresh_token": "r2"},
            )
        )
        self.registry = Registry(
            self.path,
            refresher=CredentialRefresher(action=self.action, clock=lambda: NOW),
        )

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def on_disk(self) -> dict:
        return yaml.safe_load(self.path.read_text(encoding="utf-8"))

    def assertUntouched(self) -> None:
        self.assertEqual(self.path.read_text(encoding="utf-8"), KUBECONFIG)


class TestReadOperations(RegistryTestCase):
    """Tests for list_contexts, current, status and find_duplicates."""

    def test_list_contexts(self) -> None:
        summaries = self.registry.list_contexts()

        self.assertEqual([s.name for s in summaries], ["dev", "dev2", "prod", "prod-oidc"])
        self.assertEqual(
            summaries[0],
            ContextSummary(name="dev", cluster="dev-cluster", user="dev-oidc", namespace="web", current=True),
        )
        self.assertFalse(summaries[2].current)
        self.assertUntouched()

    def test_current(self) -> None:
        self.assertEqual(self.registry.current().name, "dev")

    def test_current_unset(self) -> None:
        self.path.write_text(KUBECONFIG.replace("current-context: dev", "current-context: ''"))
        self.assertIsNone(self.registry.current())

    def test_status(self) -> None:
        status = self.registry.status("dev")

        self.assertEqual(status.user, "dev-oidc")
        self.assertEqual(status.kind, "auth-provider")
        self.assertEqual(status.staleness, Staleness.EXPIRED)
        self.assertTrue(status.refreshable)

    def test_status_static_token(self) -> None:
        status = self.registry.status("prod")
        self.assertEqual(status.staleness, Staleness.UNKNOWN)
        self.assertFalse(status.refreshable)

    def test_status_unknown_context(self) -> None:
        with self.assertRaises(ContextNotFoundError):
            self.registry.status("ghost")

    def test_find_duplicates(self) -> None:
        """Test that cached tokens do not keep equal users apart."""
        self.assertEqual(self.registry.find_duplicates(), [DuplicateGroup("dev", ["dev2"])])
        self.assertUntouched()

    def test_missing_kubeconfig(self) -> None:
        registry = Registry(Path(self.temp_dir) / "absent")
        with self.assertRaises(ConfigNotFoundError):
            registry.list_contexts()


class TestSelect(RegistryTestCase):
    """Tests for Registry.select."""

    def test_select(self) -> None:
        self.registry.select("prod")
        self.assertEqual(self.on_disk()["current-context"], "prod")

    def test_select_current_is_noop(self) -> None:
        self.registry.select("dev")
        self.assertUntouched()

    def test_select_repairs_missing_current_context(self) -> None:
        """Test that a current-context left behind by kubectl can be replaced."""
        self.path.write_text(KUBECONFIG.replace("current-context: dev", "current-context: gone"))

        with self.assertLogs("kontext.kubeconfig.models", level="WARNING"):
            self.assertIsNone(self.registry.current())
        with self.assertLogs("kontext.kubeconfig.models", level="WARNING"):
            self.registry.select("prod")

        self.assertEqual(self.on_disk()["current-context"], "prod")

    def test_select_unknown(self) -> None:
        with self.assertRaises(ContextNotFoundError):
            self.registry.select("ghost")
        self.assertUntouched()


class TestRefresh(RegistryTestCase):
    """Tests for Registry.refresh."""

    def test_refresh_expired_oidc(self) -> None:
        """Test that only the refreshed token fields change on disk."""
        result = self.registry.refresh("dev")

        self.assertTrue(result.refreshed)
        self.action.assert_called_once()

        expected = KUBECONFIG.replace(
            f"id-token: {EXPIRED_ID_TOKEN}", f"id-token: {NEW_ID_TOKEN}"
        ).replace(
            "refresh-token: r1\n      name: oidc\n- name: prod-token",
            "refresh-token: r2\n      name: oidc\n- name: prod-token",
        )
        self.assertEqual(self.path.read_text(encoding="utf-8"), expected)

    def test_refresh_unknown_context(self) -> None:
        with self.assertRaises(ContextNotFoundError):
            self.registry.refresh("ghost")
        self.action.assert_not_called()
        self.assertUntouched()

    def test_refresh_fresh_twice(self) -> None:
        """Test that refreshing a fresh credential changes nothing."""
        self.registry.refresh("dev")
        after_first = self.path.read_text(encoding="utf-8")

        result = Registry(
            self.path, refresher=CredentialRefresher(action=self.action, clock=lambda: NOW)
        ).refresh("dev")

        self.assertFalse(result.refreshed)
        self.assertEqual(self.action.call_count, 1)
        self.assertEqual(self.path.read_text(encoding="utf-8"), after_first)

    def test_refresh_opaque_token_keeps_expiry(self) -> None:
        """Test that an expiry for a non-JWT token is cached and honored."""
        self.action.return_value = RefreshedCredential(
            token="opaque-token", expiry=NOW + timedelta(hours=1)
        )
        self.registry.refresh("dev")

        config = self.on_disk()["users"][0]["user"]["auth-provider"]["config"]
        self.assertEqual(config["id-token"], "opaque-token")
        self.assertEqual(config["expiry"], "2026-01-15T13:00:00Z")
        self.assertEqual(self.registry.status("dev").staleness, Staleness.FRESH)

        result = self.registry.refresh("dev")
        self.assertFalse(result.refreshed)
        self.assertEqual(self.action.call_count, 1)

    def test_refresh_failure_leaves_file(self) -> None:
        self.action.side_effect = RefreshActionError("invalid_grant")
        with self.assertRaises(RefreshFailedError):
            self.registry.refresh("dev")
        self.assertUntouched()

    def test_refresh_static_token(self) -> None:
        with self.assertRaises(AuthProviderUnsupportedError):
            self.registry.refresh("prod")
        self.assertUntouched()


class TestRemove(RegistryTestCase):
    """Tests for Registry.remove."""

    def test_remove_current(self) -> None:
        """Test removing the current context clears it and keeps shared entries."""
        result = self.registry.remove(["dev"])

        self.assertTrue(result.cleared_current)
        self.assertEqual(result.clusters, ["dev-cluster"])
        self.assertEqual(result.users, [])

        document = self.on_disk()
        self.assertEqual(document["current-context"], "")
        self.assertNotIn("dev", [c["name"] for c in document["contexts"]])
        # dev-oidc is still used by prod-oidc
        self.assertIn("dev-oidc", [u["name"] for u in document["users"]])

    def test_remove_many(self) -> None:
        result = self.registry.remove(["prod", "prod-oidc"])

        self.assertEqual(result.clusters, ["prod-cluster"])
        self.assertEqual(result.users, ["prod-token"])
        self.assertEqual(
            [c["name"] for c in self.on_disk()["clusters"]],
            ["dev-cluster", "dev-cluster-copy"],
        )

    def test_remove_with_unknown_removes_nothing(self) -> None:
        with self.assertRaises(ContextNotFoundError) as cm:
            self.registry.remove(["prod", "ghost"])
        self.assertEqual(cm.exception.names, ["ghost"])
        self.assertUntouched()

    def test_write_failure_leaves_file(self) -> None:
        with patch("kontext.kubeconfig.store.os.replace", side_effect=OSError("read-only")):
            with self.assertRaises(ConfigWriteError):
                self.registry.remove(["prod"])
        self.assertUntouched()


class TestDedupe(RegistryTestCase):
    """Tests for Registry.dedupe."""

    def test_dedupe(self) -> None:
        groups = self.registry.dedupe()

        self.assertEqual(groups, [DuplicateGroup("dev", ["dev2"])])
        document = self.on_disk()
        self.assertEqual(
            [c["name"] for c in document["contexts"]], ["dev", "prod", "prod-oidc"]
        )
        self.assertEqual(
            [c["name"] for c in document["clusters"]], ["dev-cluster", "prod-cluster"]
        )
        self.assertEqual([u["name"] for u in document["users"]], ["dev-oidc", "prod-token"])
        self.assertEqual(document["current-context"], "dev")

    def test_dedupe_nothing_to_do(self) -> None:
        self.registry.dedupe()
        after = self.path.read_text(encoding="utf-8")

        self.assertEqual(self.registry.dedupe(), [])
        self.assertEqual(self.path.read_text(encoding="utf-8"), after)


class TestFromSettings(unittest.TestCase):
    """Tests for Registry.from_settings."""

    def test_paths_and_timing(self) -> None:
        settings = Settings(kubeconfig="/tmp/kube/config")
        settings.refresh.timeout_seconds = 3

        registry = Registry.from_settings(settings)
        self.assertEqual(registry.path, Path("/tmp/kube/config"))
        self.assertEqual(registry.refresher.timeout, 3)

        registry = Registry.from_settings(settings, kubeconfig="/other")
        self.assertEqual(registry.path, Path("/other"))


if __name__ == "__main__":
    unittest.main()
