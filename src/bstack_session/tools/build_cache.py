"""Persistent build-name counter backing ${BUILD_NUMBER} outside CI."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

from pydantic import BaseModel, Field

from bstack_session.errors import BuildCacheError

logger = logging.getLogger(__name__)


def default_cache_path() -> Path:
    return Path.home() / ".browserstack" / ".build-name-cache.json"


class BuildNameCache(BaseModel):
    """JSON file mapping build name -> {"identifier": <last used number>}.

    The file is read and rewritten in full on every update without any lock, so
    two processes bumping the same build name at the same moment can both get
    the same number. Last writer wins.
    """

    cache_path: Path = Field(default_factory=default_cache_path)

    # API --------------------------------------------------------------
    def read(self) -> Dict[str, Dict[str, Any]]:
        if not self.cache_path.exists():
            return {}
        try:
            data = json.loads(self.cache_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise BuildCacheError(f"Unable to parse build cache {self.cache_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise BuildCacheError(f"Build cache {self.cache_path} is not a JSON object")
        return data

    def next_build_number(self, build_name: str) -> int | None:
        """Bump and persist the counter for `build_name`; None when the store is unusable."""
        try:
            store = self.read()
            number = self._stored_identifier(store, build_name) + 1
            self.update(build_name, number)
        except (BuildCacheError, OSError) as exc:
            logger.debug("Failed to resolve local build number for %r: %s", build_name, exc)
            return None
        return number

    def update(self, build_name: str | None, identifier: int) -> None:
        if build_name is None:
            return
        store = self.read()
        store[build_name] = {"identifier": identifier}
        self._write(store)

    # Helpers ----------------------------------------------------------
    def _stored_identifier(self, store: Dict[str, Any], build_name: str) -> int:
        entry = store.get(build_name)
        if entry is None:
            return 0
        try:
            return int(entry["identifier"])
        except (KeyError, TypeError, ValueError) as exc:
            raise BuildCacheError(f"Invalid cache entry for build {build_name!r}: {entry!r}") from exc

    def _write(self, store: Dict[str, Any]) -> None:
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        self.cache_path.write_text(json.dumps(store, indent=2), encoding="utf-8")
