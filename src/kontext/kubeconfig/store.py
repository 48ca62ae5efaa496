"""
Kubeconfig persistence.

ConfigStore loads a kubeconfig into a KubeConfig model and writes it back.

Write Protocol:
    1. Validate the model's invariants
    2. Render it deterministically with PyYAML
    3. Skip the write entirely if the document is unchanged since load
    4. Write to a temporary file in the target's directory and fsync it
    5. Copy the target's permission bits (0600 for new files)
    6. os.replace the temporary file over the target

A reader therefore sees either the old file or the new one, never a partial
write. Concurrent writers are not locked out: the last rename wins.
"""

from __future__ import annotations

import copy
import logging
import os
import stat
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, TYPE_CHECKING

import yaml

from kontext.errors import (
    ConfigNotFoundError,
    ConfigParseError,
    ConfigWriteError,
)
from kontext.kubeconfig.models import KubeConfig

if TYPE_CHECKING:
    from kontext.config.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_KUBECONFIG = Path.home() / ".kube" / "config"
NEW_FILE_MODE = 0o600


def resolve_kubeconfig_path(
    explicit: str | Path | None = None,
    settings: Settings | None = None,
) -> Path:
    """
    Resolve which kubeconfig to manage.

    Precedence: explicit path, then the ``kubeconfig`` setting (config file
    or KONTEXT_KUBECONFIG), then the first entry of $KUBECONFIG, then
    ~/.kube/config.

    Returns:
        The resolved path (not checked for existence).
    """
    if explicit:
        return Path(explicit).expanduser()
    if settings is not None and settings.kubeconfig:
        return Path(settings.kubeconfig).expanduser()

    env_value = os.environ.get("KUBECONFIG", "")
    entries = [entry for entry in env_value.split(os.pathsep) if entry]
    if entries:
        if len(entries) > 1:
            logger.warning(
                f"KUBECONFIG lists {len(entries)} files; managing only {entries[0]}"
            )
        return Path(entries[0]).expanduser()
    return DEFAULT_KUBECONFIG


def render(model: KubeConfig) -> str:
    """Serialize a model deterministically."""
    return yaml.safe_dump(
        model.to_dict(),
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        width=float("inf"),
    )


class ConfigStore:
    """
    Load and atomically save kubeconfig documents.

    The store holds no state between calls; the path is passed to each call
    so tests and callers can point it anywhere.
    """

    def load(self, path: Path) -> KubeConfig:
        """
        Load a kubeconfig.

        Raises:
            ConfigNotFoundError: If the file does not exist.
            ConfigParseError: If it is not YAML or does not fit the schema.
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ConfigNotFoundError(path) from e
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigParseError(path, f"cannot read file: {e}") from e

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigParseError(path, f"invalid YAML: {e}") from e

        try:
            model = KubeConfig.from_dict(data)
        except ConfigParseError as e:
            raise ConfigParseError(path, e.detail) from e

        model.source = copy.deepcopy(data) if data is not None else None
        logger.debug(
            f"Loaded {path}: {len(model.contexts)} contexts, "
            f"{len(model.clusters)} clusters, {len(model.users)} users"
        )
        return model

    def save(self, path: Path, model: KubeConfig) -> bool:
        """
        Validate and atomically write a model.

        Returns:
            True if the file was written, False if the document was
            unchanged since it was loaded.

        Raises:
            InvariantViolationError: If the model is inconsistent.
            ConfigWriteError: If the file cannot be written.
        """
        # write through symlinks so a linked kubeconfig stays linked
        path = Path(os.path.realpath(path))
        model.validate()

        if model.source is not None and model.to_dict() == model.source:
            logger.debug(f"{path} unchanged; skipping write")
            return False

        content = render(model)
        mode = self._target_mode(path)
        try:
            with self._atomic_writer(path) as (handle, temp_path):
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
                os.chmod(temp_path, mode)
        except OSError as e:
            raise ConfigWriteError(path, str(e)) from e

        model.source = model.to_dict()
        logger.info(f"Wrote {path}")
        return True

    @staticmethod
    def _target_mode(path: Path) -> int:
        try:
            return stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            return NEW_FILE_MODE

    @staticmethod
    @contextmanager
    def _atomic_writer(path: Path) -> Iterator[tuple[IO[str], str]]:
        """
        Yield a temporary file next to ``path``; rename it over ``path`` on exit.

        The temporary file is removed if anything fails before the rename
        completes.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(
            prefix=f".{path.name}.",
            suffix=".tmp",
            dir=str(path.parent),
        )
        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as handle:
                yield handle, temp_path
            os.replace(temp_path, path)
        except BaseException:
            # Clean up temp file on error
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise
