"""Prepare BrowserStack sessions: capabilities, build identifiers, app upload and Local tunnel."""

__version__ = "0.1.0"
