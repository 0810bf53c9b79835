"""Prepares and tears down a BrowserStack session around a test run."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from bstack_session import __version__
from bstack_session.config import EnvironmentSnapshot, RunnerConfig, ServiceOptions
from bstack_session.errors import AppValidationError, SevereServiceError
from bstack_session.policies import AppPolicy, RerunPolicy
from bstack_session.tools.app_uploader import AppReference, AppUploader, validate_app
from bstack_session.tools.build_cache import BuildNameCache
from bstack_session.tools.build_identifier import BuildIdentifierResolver
from bstack_session.tools.capabilities import (
    CapabilityFlag,
    set_app_capability,
    set_capability_flag,
)
from bstack_session.tools.tunnel import BrowserStackLocalBinary, TunnelManager

logger = logging.getLogger(__name__)


class BrowserStackLauncher(BaseModel):
    """Session preparer called once before (`on_prepare`) and once after (`on_complete`) a run.

    Construction stamps the service version into every capability entry and
    applies a requested rerun to `config.specs`. The capability container is
    mutated in place and keeps its shape.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    options: ServiceOptions = Field(default_factory=ServiceOptions)
    capabilities: Any = Field(default_factory=list)
    config: RunnerConfig = Field(default_factory=RunnerConfig)
    environment: EnvironmentSnapshot = Field(default_factory=EnvironmentSnapshot.from_environ)
    build_cache: BuildNameCache = Field(default_factory=BuildNameCache)
    uploader: AppUploader | None = None
    app_policy: AppPolicy = Field(default_factory=AppPolicy)
    binding_factory: Callable[[], Any] = BrowserStackLocalBinary
    _tunnel: TunnelManager | None = PrivateAttr(default=None)

    def model_post_init(self, __context: Any) -> None:
        set_capability_flag(self.capabilities, CapabilityFlag.WDIO_SERVICE_VERSION, __version__)
        self.config.specs = RerunPolicy().apply(self.environment, self.config.specs)
        if self.uploader is None:
            self.uploader = AppUploader(user=self.config.user, key=self.config.key)

    @property
    def tunnel(self) -> TunnelManager | None:
        return self._tunnel

    # Hooks ------------------------------------------------------------
    async def on_prepare(self, capabilities: Any = None) -> None:
        if capabilities is None:
            capabilities = self.capabilities

        await self._prepare_app(capabilities)
        BuildIdentifierResolver(
            environment=self.environment,
            cache=self.build_cache,
            override=self.options.build_identifier,
        ).resolve(capabilities)

        if not self.options.browserstack_local:
            logger.info("browserstackLocal is not enabled - skipping...")
            return

        set_capability_flag(capabilities, CapabilityFlag.LOCAL, True)
        local_identifier = self.options.opts.get("localIdentifier")
        if local_identifier:
            set_capability_flag(capabilities, CapabilityFlag.LOCAL_IDENTIFIER, local_identifier)

        self._tunnel = TunnelManager(binding=self.binding_factory(), forced_stop=self.options.forced_stop)
        tunnel_options: Dict[str, Any] = {"key": self.config.key, **self.options.opts}
        started = time.monotonic()
        await self._tunnel.start(tunnel_options)
        elapsed = time.monotonic() - started
        logger.info("Browserstack Local successfully started after %.3f sec", elapsed)

    async def on_complete(self) -> int | None:
        if self._tunnel is None:
            return None
        pid = await self._tunnel.stop()
        if pid is not None:
            logger.info("Killed Browserstack Local process %s", pid)
        return pid

    # Helpers ----------------------------------------------------------
    async def _prepare_app(self, capabilities: Any) -> None:
        if self.options.app is None or self.options.app == "":
            logger.info("app is not defined in browserstack-service config, skipping ...")
            return

        try:
            reference = validate_app(self.options.app, self.app_policy)
        except AppValidationError as exc:
            raise SevereServiceError(str(exc)) from exc

        app = await self._resolve_app(reference)
        logger.info("Using app: %s", app)
        set_app_capability(capabilities, app)

    async def _resolve_app(self, reference: AppReference) -> str:
        if not self.app_policy.is_uploadable(reference.app):
            return reference.app
        if Path(reference.app).is_file():
            result = await self.uploader.upload(reference)
            return result.app_url
        if reference.custom_id:
            return reference.custom_id
        raise SevereServiceError(
            f"[Invalid app path] app path {reference.app} is not correct, "
            "Provide correct path to app under test"
        )
