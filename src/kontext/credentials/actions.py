"""
Default refresh actions and status probes.

These are the concrete transports behind the refresh capability: an OIDC
token endpoint reached over HTTPS, a helper command configured on an
auth-provider (the gcp ``cmd-path`` convention), and client-go exec plugins.
Each one is a plain callable taking the credential parameters and a timeout,
so tests and embedders can inject their own.

Every action makes a single attempt. Any failure, including the timeout
elapsing, is raised as RefreshActionError; retrying is left to the user so
an identity provider is never hammered.
"""

from __future__ import annotations

import json
import logging
import os
import shlex
import subprocess
import sys
import time
from datetime import UTC, datetime, timedelta
from typing import Any

import requests

from kontext.credentials.base import RefreshedCredential, jwt_expiry, parse_timestamp
from kontext.errors import RefreshActionError

logger = logging.getLogger(__name__)

EXEC_INFO_ENV = "KUBERNETES_EXEC_INFO"
DEFAULT_EXEC_API_VERSION = "client.authentication.k8s.io/v1beta1"


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def run_command(
    argv: list[str],
    timeout: float,
    env: dict[str, str] | None = None,
    capture_stdin: bool = True,
) -> str:
    """
    Run an external command and return its stdout.

    Args:
        argv: Command and arguments.
        timeout: Seconds before the command is killed.
        env: Extra environment variables layered over the current environment.
        capture_stdin: If False, the command inherits stdin so it can prompt.

    Raises:
        RefreshActionError: If the command cannot start, times out, or exits
            non-zero.
    """
    full_env = dict(os.environ)
    if env:
        full_env.update(env)

    logger.debug(f"Running {argv[0]} with timeout {timeout:.0f}s")
    try:
        # interactive commands keep the terminal for prompts on stdin and stderr
        result = subprocess.run(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE if capture_stdin else None,
            text=True,
            timeout=timeout,
            env=full_env,
            stdin=subprocess.DEVNULL if capture_stdin else None,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise RefreshActionError(f"{argv[0]} timed out after {timeout:.0f}s") from e
    except OSError as e:
        raise RefreshActionError(f"Cannot run {argv[0]}: {e}") from e

    if result.returncode != 0:
        stderr = (result.stderr or "").strip().splitlines()
        detail = stderr[-1] if stderr else "no output"
        raise RefreshActionError(
            f"{argv[0]} exited with status {result.returncode}: {detail}"
        )
    return result.stdout


def extract_path(document: Any, expression: str) -> Any:
    """
    Evaluate a minimal JSONPath of the form ``{.a.b.c}`` against a document.

    This covers the ``token-key``/``expiry-key`` expressions used by
    auth-provider helper commands.

    Returns:
        The value found, or None if any segment is missing.
    """
    path = expression.strip()
    if path.startswith("{") and path.endswith("}"):
        path = path[1:-1]
    path = path.lstrip("$").lstrip(".")
    value = document
    for segment in filter(None, path.split(".")):
        if not isinstance(value, dict):
            return None
        value = value.get(segment)
    return value


def _provider_config(params: dict[str, Any]) -> dict[str, Any]:
    provider = params.get("auth-provider") or {}
    return dict(provider.get("config") or {})


def _exec_config(params: dict[str, Any]) -> dict[str, Any]:
    exec_config = params.get("exec", params)
    if not isinstance(exec_config, dict) or not exec_config.get("command"):
        raise RefreshActionError("exec configuration has no command")
    return exec_config


def run_exec_plugin(
    exec_config: dict[str, Any],
    timeout: float,
    interactive: bool = False,
) -> dict[str, Any]:
    """
    Run a client-go exec credential plugin and return its ``status`` object.

    Raises:
        RefreshActionError: If the plugin fails or prints something other
            than an ExecCredential.
    """
    command = str(exec_config["command"])
    argv = [command] + [str(arg) for arg in exec_config.get("args") or []]
    env = {
        str(item["name"]): str(item.get("value", ""))
        for item in exec_config.get("env") or []
        if isinstance(item, dict) and "name" in item
    }
    env[EXEC_INFO_ENV] = json.dumps(
        {
            "apiVersion": exec_config.get("apiVersion", DEFAULT_EXEC_API_VERSION),
            "kind": "ExecCredential",
            "spec": {"interactive": interactive},
        }
    )

    stdout = run_command(argv, timeout, env=env, capture_stdin=not interactive)
    try:
        document = json.loads(stdout)
    except json.JSONDecodeError as e:
        raise RefreshActionError(f"{command} did not print valid JSON: {e}") from e

    if not isinstance(document, dict) or document.get("kind") != "ExecCredential":
        raise RefreshActionError(f"{command} did not print an ExecCredential")
    status = document.get("status")
    if not isinstance(status, dict):
        raise RefreshActionError(f"{command} printed an ExecCredential without status")
    return status


# -----------------------------------------------------------------------------
# Refresh Actions
# -----------------------------------------------------------------------------


class OidcRefreshAction:
    """
    Refresh an ``oidc`` auth-provider through the issuer's token endpoint.

    Uses OIDC discovery to find the token endpoint, then performs a
    ``refresh_token`` grant. The id_token in the response becomes the new
    credential; its ``exp`` claim is the new expiry.
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session = session

    def __call__(self, params: dict[str, Any], timeout: float) -> RefreshedCredential:
        config = _provider_config(params)
        issuer = config.get("idp-issuer-url")
        refresh_token = config.get("refresh-token")
        client_id = config.get("client-id")
        if not issuer or not refresh_token or not client_id:
            raise RefreshActionError(
                "oidc auth-provider needs idp-issuer-url, client-id and refresh-token"
            )

        session = self._session or requests.Session()
        verify: bool | str = config.get("idp-certificate-authority") or True
        deadline = time.monotonic() + timeout

        try:
            discovery = session.get(
                f"{str(issuer).rstrip('/')}/.well-known/openid-configuration",
                timeout=self._remaining(deadline),
                verify=verify,
            )
            discovery.raise_for_status()
            document = discovery.json()
            token_endpoint = (
                document.get("token_endpoint") if isinstance(document, dict) else None
            )
            if not token_endpoint:
                raise RefreshActionError(f"{issuer} does not advertise a token endpoint")

            form = {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": client_id,
            }
            if config.get("client-secret"):
                form["client_secret"] = config["client-secret"]

            response = session.post(
                token_endpoint,
                data=form,
                headers={"Accept": "application/json"},
                timeout=self._remaining(deadline),
                verify=verify,
            )
            if response.status_code in (400, 401):
                raise RefreshActionError(
                    f"{issuer} rejected the refresh token (HTTP {response.status_code})"
                )
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.Timeout as e:
            raise RefreshActionError(f"Request to {issuer} timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise RefreshActionError(f"Request to {issuer} failed: {e}") from e
        except ValueError as e:
            raise RefreshActionError(f"{issuer} returned invalid JSON: {e}") from e

        id_token = payload.get("id_token") if isinstance(payload, dict) else None
        if not isinstance(id_token, str) or not id_token:
            raise RefreshActionError(f"{issuer} response did not include an id_token")

        expiry = jwt_expiry(id_token)
        if expiry is None and payload.get("expires_in"):
            try:
                expiry = datetime.now(UTC) + timedelta(seconds=int(payload["expires_in"]))
            except (TypeError, ValueError, OverflowError) as e:
                raise RefreshActionError(
                    f"{issuer} returned an invalid expires_in: {payload['expires_in']!r}"
                ) from e

        extra: dict[str, Any] = {}
        if payload.get("refresh_token"):
            extra["refresh_token"] = payload["refresh_token"]

        logger.info(f"Obtained new id_token from {issuer}")
        return RefreshedCredential(token=id_token, expiry=expiry, extra=extra)

    @staticmethod
    def _remaining(deadline: float) -> float:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise requests.exceptions.Timeout("refresh deadline exceeded")
        return remaining


class CommandRefreshAction:
    """
    Refresh an auth-provider by running its configured helper command.

    Follows the gcp auth-provider convention: ``cmd-path`` and ``cmd-args``
    name the command, whose JSON output is read with the ``token-key`` and
    ``expiry-key`` expressions.
    """

    DEFAULT_TOKEN_KEY = "{.access_token}"
    DEFAULT_EXPIRY_KEY = "{.token_expiry}"

    def __call__(self, params: dict[str, Any], timeout: float) -> RefreshedCredential:
        config = _provider_config(params)
        cmd_path = config.get("cmd-path")
        if not cmd_path:
            raise RefreshActionError("auth-provider has no cmd-path to run")

        argv = [str(cmd_path)] + shlex.split(str(config.get("cmd-args") or ""))
        stdout = run_command(argv, timeout)
        try:
            document = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise RefreshActionError(f"{cmd_path} did not print valid JSON: {e}") from e

        token = extract_path(document, str(config.get("token-key") or self.DEFAULT_TOKEN_KEY))
        if not token:
            raise RefreshActionError(f"{cmd_path} output did not contain a token")
        expiry = parse_timestamp(
            extract_path(document, str(config.get("expiry-key") or self.DEFAULT_EXPIRY_KEY))
        )
        logger.info(f"Obtained new token from {cmd_path}")
        return RefreshedCredential(token=str(token), expiry=expiry)


class ExecPluginAction:
    """Refresh an exec credential by running the plugin itself."""

    def __call__(self, params: dict[str, Any], timeout: float) -> RefreshedCredential:
        exec_config = _exec_config(params)
        status = run_exec_plugin(exec_config, timeout, interactive=sys.stdin.isatty())
        token = status.get("token")
        if not token:
            raise RefreshActionError(
                f"{exec_config['command']} did not return a token"
            )
        expiry = parse_timestamp(status.get("expirationTimestamp"))
        return RefreshedCredential(token=str(token), expiry=expiry)


# -----------------------------------------------------------------------------
# Status Probes
# -----------------------------------------------------------------------------


class ExecStatusProbe:
    """
    Ask an exec plugin for its current credential's expiry.

    Runs the plugin non-interactively; plugins that cache tokens answer from
    their cache.
    """

    def __call__(self, exec_config: dict[str, Any], timeout: float) -> datetime | None:
        status = run_exec_plugin(_exec_config(exec_config), timeout, interactive=False)
        return parse_timestamp(status.get("expirationTimestamp"))
