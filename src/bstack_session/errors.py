"""Exception types raised while preparing a BrowserStack session."""
from __future__ import annotations


class SevereServiceError(RuntimeError):
    """Fatal preparation failure; the host runner must abort instead of retrying."""

    name = "SevereServiceError"


class AppValidationError(ValueError):
    """The configured app descriptor is malformed."""


class BuildCacheError(RuntimeError):
    """The local build-name counter store could not be read or written."""


class TunnelError(RuntimeError):
    """BrowserStack Local failed to start or stop."""
