"""Expand ${BUILD_NUMBER} and ${DATE_TIME} in BrowserStack build identifiers."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict

from pydantic import BaseModel, ConfigDict, Field

from bstack_session.config import EnvironmentSnapshot
from bstack_session.tools.build_cache import BuildNameCache
from bstack_session.tools.capabilities import (
    CapabilityFlag,
    iter_capability_entries,
    read_build_settings,
    set_entry_flag,
)

logger = logging.getLogger(__name__)

BUILD_NUMBER_TOKEN = "${BUILD_NUMBER}"
DATE_TIME_TOKEN = "${DATE_TIME}"
DATE_TIME_FORMAT = "%d-%b-%Y %H:%M:%S"


class BuildIdentifierResolver(BaseModel):
    """Resolves build identifier templates of every capability entry in place.

    Entries are handled one after another. A build name draws at most one
    counter per `resolve` call, so all entries of a run share the same number.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    environment: EnvironmentSnapshot = Field(default_factory=EnvironmentSnapshot)
    cache: BuildNameCache = Field(default_factory=BuildNameCache)
    override: str | None = None
    clock: Callable[[], datetime] = datetime.now

    def resolve(self, capabilities: Any) -> None:
        timestamp = self.clock().strftime(DATE_TIME_FORMAT)
        drawn: Dict[str, int | None] = {}

        for entry in iter_capability_entries(capabilities):
            template, build_name = read_build_settings(entry)
            template = self.override or template
            if not template:
                continue

            if not build_name or self.environment.build_name_override:
                logger.warning("Skipping buildIdentifier as buildName is not passed.")
                set_entry_flag(entry, CapabilityFlag.BUILD_IDENTIFIER)
                continue

            resolved = template
            if BUILD_NUMBER_TOKEN in resolved:
                ci_build_number = self.environment.ci_build_number
                if ci_build_number:
                    replacement = f"CI {ci_build_number}"
                else:
                    if build_name not in drawn:
                        drawn[build_name] = self.cache.next_build_number(build_name)
                    number = drawn[build_name]
                    if number is None:
                        logger.debug("No local build number for %r, leaving template as is", build_name)
                        continue
                    replacement = str(number)
                resolved = resolved.replace(BUILD_NUMBER_TOKEN, replacement)

            if DATE_TIME_TOKEN in resolved:
                resolved = resolved.replace(DATE_TIME_TOKEN, timestamp)

            set_entry_flag(entry, CapabilityFlag.BUILD_IDENTIFIER, resolved)
