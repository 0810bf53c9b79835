"""Guardrail policies for BrowserStack session preparation."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePath
from typing import Any, FrozenSet, List, Tuple

from bstack_session.config import EnvironmentSnapshot
from bstack_session.errors import AppValidationError

SUPPORTED_APP_PROPERTIES = "{id<string>, path<string>, custom_id<string>, shareable_id<string>}"


@dataclass(frozen=True)
class AppPolicy:
    """Rules an app descriptor has to satisfy before anything is uploaded."""

    supported_keys: FrozenSet[str] = frozenset({"id", "path", "custom_id", "shareable_id"})
    compatible_pair: FrozenSet[str] = frozenset({"path", "custom_id"})
    uploadable_extensions: Tuple[str, ...] = (".apk", ".aab", ".ipa")

    def assert_valid(self, descriptor: Any) -> None:
        if isinstance(descriptor, str):
            return
        if not isinstance(descriptor, dict) or not descriptor:
            raise AppValidationError("[Invalid format] app should be string or an object")

        keys = list(descriptor)
        if any(key not in self.supported_keys for key in keys):
            raise AppValidationError(
                f"[Invalid app property] supported properties are {SUPPORTED_APP_PROPERTIES}."
            )
        if len(keys) > 2 or (len(keys) == 2 and set(keys) != self.compatible_pair):
            raise AppValidationError(
                f"keys {','.join(keys)} can't co-exist as app values, use any one property from "
                f'{SUPPORTED_APP_PROPERTIES}, only "path" and "custom_id" can co-exist.'
            )

    def is_uploadable(self, app: str) -> bool:
        return PurePath(app).suffix.lower() in self.uploadable_extensions


@dataclass(frozen=True)
class RerunPolicy:
    """Replaces the spec list with the failed tests when a rerun is requested."""

    def apply(self, environment: EnvironmentSnapshot, specs: List[str]) -> List[str]:
        if environment.rerun and environment.rerun_tests:
            return list(environment.rerun_tests)
        return specs
