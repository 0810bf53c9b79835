"""Locate and mutate BrowserStack flags inside capability containers."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)

VENDOR_OPTIONS_KEY = "bstack:options"
LEGACY_PREFIX = "browserstack."
APP_KEY = "app"
EXTENSION_APP_KEY = "appium:app"
LEGACY_BUILD_NAME_KEY = "build"
BUILD_NAME_KEY = "buildName"

# Driver vendors whose `namespace:Name` keys mark a W3C (extension capability) entry.
EXTENSION_NAMESPACES = frozenset(
    {"appium", "bstack", "goog", "moz", "ms", "safari", "se", "wdio", "webkit"}
)

CapabilityEntry = Dict[str, Any]


class CapabilityFlag(str, Enum):
    LOCAL = "local"
    LOCAL_IDENTIFIER = "localIdentifier"
    BUILD_IDENTIFIER = "buildIdentifier"
    WDIO_SERVICE_VERSION = "wdioService"


def iter_capability_entries(container: Any) -> List[CapabilityEntry]:
    """Return the mutable capability dicts of a capability list or a multiremote map."""
    if isinstance(container, list):
        return [entry for entry in container if isinstance(entry, dict)]
    if isinstance(container, dict):
        entries: List[CapabilityEntry] = []
        for name, instance in container.items():
            capabilities = instance.get("capabilities") if isinstance(instance, dict) else None
            if isinstance(capabilities, dict):
                entries.append(capabilities)
            else:
                logger.debug("Skipping multiremote instance %r without capabilities", name)
        return entries
    raise TypeError("Capabilities should be an object or Array!")


def is_extension_capability(key: str) -> bool:
    namespace, separator, name = str(key).partition(":")
    return bool(separator and name) and namespace in EXTENSION_NAMESPACES


def uses_vendor_options(entry: CapabilityEntry) -> bool:
    """True when BrowserStack flags belong under `bstack:options` for this entry."""
    if VENDOR_OPTIONS_KEY in entry:
        return True
    return any(is_extension_capability(key) for key in entry)


def set_entry_flag(entry: CapabilityEntry, flag: CapabilityFlag | str, value: Any = None) -> None:
    """Write `flag` into one entry, or delete it when `value` is None."""
    flag = CapabilityFlag(flag)
    if uses_vendor_options(entry):
        if value is None:
            options = entry.get(VENDOR_OPTIONS_KEY)
            if isinstance(options, dict):
                options.pop(flag.value, None)
            return
        options = entry.get(VENDOR_OPTIONS_KEY)
        if not isinstance(options, dict):
            options = entry[VENDOR_OPTIONS_KEY] = {}
        options[flag.value] = value
        return

    legacy_key = LEGACY_PREFIX + flag.value
    if value is None:
        entry.pop(legacy_key, None)
    else:
        entry[legacy_key] = value


def set_capability_flag(container: Any, flag: CapabilityFlag | str, value: Any = None) -> None:
    """Apply `set_entry_flag` to every entry of the container, preserving its shape."""
    flag = CapabilityFlag(flag)
    for entry in iter_capability_entries(container):
        set_entry_flag(entry, flag, value)


def read_entry_flag(entry: CapabilityEntry, flag: CapabilityFlag | str) -> Any:
    flag = CapabilityFlag(flag)
    if uses_vendor_options(entry):
        options = entry.get(VENDOR_OPTIONS_KEY)
        return options.get(flag.value) if isinstance(options, dict) else None
    return entry.get(LEGACY_PREFIX + flag.value)


def set_app_capability(container: Any, app: str) -> None:
    for entry in iter_capability_entries(container):
        key = EXTENSION_APP_KEY if uses_vendor_options(entry) else APP_KEY
        entry[key] = app


def read_app_capability(entry: CapabilityEntry) -> Any:
    return entry.get(EXTENSION_APP_KEY, entry.get(APP_KEY))


def read_build_settings(entry: CapabilityEntry) -> Tuple[str | None, str | None]:
    """Return (build identifier template, build name) from the entry's flag location."""
    template = read_entry_flag(entry, CapabilityFlag.BUILD_IDENTIFIER)
    if uses_vendor_options(entry):
        options = entry.get(VENDOR_OPTIONS_KEY)
        build_name = options.get(BUILD_NAME_KEY) if isinstance(options, dict) else None
    else:
        build_name = entry.get(LEGACY_BUILD_NAME_KEY)
    return template, build_name
