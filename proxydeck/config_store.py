"""
Persistence for config.json and auth.json.

Every write goes through ``atomic_write_text``: the document is written to a
unique ``.tmp`` sibling (retried for transient lock errors, mostly seen on
Windows) and then renamed over the target, so readers never see a
half-written file.
Loads fall back to defaults when a file is missing or unreadable.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
import uuid

from pydantic import ValidationError

from .constants import AUTH_PATH, CONFIG_PATH, WRITE_ATTEMPTS, WRITE_RETRY_DELAY
from .exceptions import StoreError
from .schemas import AppConfig, AuthStatus

logger = logging.getLogger(__name__)


def _write_file(path: str, data: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(data)


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except OSError:
        pass


def atomic_write_text(path: str, data: str) -> None:
    """Write ``data`` to ``path`` via a temp file and an atomic rename.

    Each call gets its own temp file next to the target, so concurrent
    writers never share one. Raises StoreError if the directory or temp file
    cannot be created, if the temp file cannot be written after
    WRITE_ATTEMPTS tries, or if the rename fails. The target file is never
    opened for writing.
    """
    directory = os.path.dirname(path) or "."
    try:
        os.makedirs(directory, exist_ok=True)
    except OSError as e:
        raise StoreError(f"Failed to create directory '{directory}': {e}") from e

    stem = os.path.splitext(os.path.basename(path))[0]
    try:
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=f"{stem}.", suffix=".tmp")
    except OSError as e:
        raise StoreError(f"Failed to create temp file for {path}: {e}") from e
    os.close(fd)

    last_error: OSError | None = None
    for attempt in range(1, WRITE_ATTEMPTS + 1):
        try:
            _write_file(tmp_path, data)
            break
        except OSError as e:
            last_error = e
            if attempt < WRITE_ATTEMPTS:
                logger.warning("Save attempt %d for %s failed, retrying: %s", attempt, path, e)
                time.sleep(WRITE_RETRY_DELAY)
    else:
        _discard(tmp_path)
        raise StoreError(
            f"Failed to write temp file for {path} (attempted {WRITE_ATTEMPTS} times): {last_error}"
        )

    try:
        os.replace(tmp_path, path)
    except OSError as e:
        _discard(tmp_path)
        raise StoreError(f"Failed to rename temp file to {path}: {e}") from e


def _read_json(path: str):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def migrate_config(config: AppConfig) -> bool:
    """Fold the deprecated single ``ampOpenaiProvider`` into the provider list.

    Returns True if the config was changed and should be re-saved.
    """
    old = config.amp_openai_provider
    if old is None:
        return False
    config.amp_openai_provider = None
    if not config.amp_openai_providers:
        logger.info(
            "Migrating deprecated ampOpenaiProvider %r (%d models) to provider list",
            old.name,
            len(old.models),
        )
        if not old.id:
            old = old.model_copy(update={"id": str(uuid.uuid4())})
        config.amp_openai_providers.append(old)
    return True


class ConfigStore:
    """Loads and saves AppConfig."""

    def __init__(self, path: str = CONFIG_PATH):
        self.path = path

    def load(self) -> AppConfig:
        if not os.path.exists(self.path):
            return AppConfig()
        try:
            config = AppConfig.model_validate(_read_json(self.path))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("Could not load %s, using defaults: %s", self.path, e)
            return AppConfig()

        if migrate_config(config):
            try:
                self.save(config)
            except StoreError as e:
                logger.warning("Could not persist migrated config: %s", e)
            else:
                logger.info("Config migration complete")
        return config

    def save(self, config: AppConfig) -> None:
        atomic_write_text(self.path, config.model_dump_json(by_alias=True, indent=2))
        logger.debug("Config saved to %s", self.path)


class AuthStore:
    """Loads and saves the per-provider AuthStatus."""

    def __init__(self, path: str = AUTH_PATH):
        self.path = path

    def load(self) -> AuthStatus:
        if not os.path.exists(self.path):
            return AuthStatus()
        try:
            return AuthStatus.model_validate(_read_json(self.path))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("Could not load %s, using defaults: %s", self.path, e)
            return AuthStatus()

    def save(self, auth: AuthStatus) -> None:
        atomic_write_text(self.path, auth.model_dump_json(indent=2))
