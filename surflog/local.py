from __future__ import annotations

import logging
import os
from copy import deepcopy
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import TypeAdapter, ValidationError

from .schemas import Entry, Profile

LOGGER = logging.getLogger(__name__)

SURFLOG_DATA_DIR = os.getenv("SURFLOG_DATA_DIR", str(Path.home() / ".surflog"))
ENTRIES_KEY = "surflog.entries"
PROFILE_KEY = "surflog.profile"

T = TypeVar("T")


class LocalBlob(Generic[T]):
    """One named JSON document on the device, replaced wholesale on every write."""

    def __init__(self, path: Path, adapter: TypeAdapter[T], default: T) -> None:
        self.path = path
        self._adapter = adapter
        self._default = default

    @property
    def key(self) -> str:
        return self.path.stem

    def default(self) -> T:
        return deepcopy(self._default)

    def read(self) -> T:
        """Stored value, or the default when nothing usable is stored.

        Unreadable content is logged and removed so the next write starts clean.
        """
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return self.default()
        except OSError:
            LOGGER.exception("Failed to read local data for key %r", self.key)
            return self.default()
        try:
            return self._adapter.validate_json(raw)
        except ValidationError:
            LOGGER.warning("Corrupted local data for key %r. Resetting.", self.key)
            self._discard()
            return self.default()

    def write(self, value: T) -> bool:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(self._adapter.dump_json(value))
            os.replace(tmp_path, self.path)
        except (OSError, ValueError):
            LOGGER.exception("Failed to write local data for key %r", self.key)
            return False
        return True

    def _discard(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError:
            LOGGER.exception("Failed to remove corrupted local data for key %r", self.key)


class LocalStorage:
    """Device-scoped store: the anonymous entry collection and the profile."""

    def __init__(self, directory: str | Path | None = None) -> None:
        self.directory = Path(directory or SURFLOG_DATA_DIR).expanduser()
        self.entries: LocalBlob[list[Entry]] = LocalBlob(
            self.directory / f"{ENTRIES_KEY}.json", TypeAdapter(list[Entry]), []
        )
        self.profile: LocalBlob[Profile] = LocalBlob(
            self.directory / f"{PROFILE_KEY}.json", TypeAdapter(Profile), Profile()
        )
