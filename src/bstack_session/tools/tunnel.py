"""BrowserStack Local tunnel lifecycle."""
from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import signal
import subprocess
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from bstack_session.errors import TunnelError

logger = logging.getLogger(__name__)

TunnelCallback = Callable[..., None]


@runtime_checkable
class TunnelBinding(Protocol):
    """Callback-style handle on the tunnel process.

    `callback` receives an exception on failure and nothing (or None) on
    success. It may be invoked from any thread.
    """

    @property
    def pid(self) -> int | None: ...

    def start(self, options: Dict[str, Any], callback: TunnelCallback) -> None: ...

    def stop(self, callback: TunnelCallback) -> None: ...

    def is_running(self) -> bool: ...


class TunnelState(str, Enum):
    stopped = "stopped"
    starting = "starting"
    running = "running"
    stopping = "stopping"
    failed = "failed"


class BrowserStackLocalBinary(BaseModel):
    """Drives the BrowserStackLocal executable in daemon mode."""

    binary_path: str = "BrowserStackLocal"
    command_timeout_seconds: int = 120
    failure_excerpt_max_chars: int = 2000
    _pid: int | None = PrivateAttr(default=None)
    _args: List[str] = PrivateAttr(default_factory=list)

    @property
    def pid(self) -> int | None:
        return self._pid

    def start(self, options: Dict[str, Any], callback: TunnelCallback) -> None:
        options = dict(options)
        binary = options.pop("binarypath", None)
        if binary:
            self.binary_path = str(binary)
        self._args = self._build_args(options)
        self._spawn("start", callback)

    def stop(self, callback: TunnelCallback) -> None:
        self._spawn("stop", callback)

    def is_running(self) -> bool:
        if self._pid is None:
            return False
        try:
            os.kill(self._pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    # Helpers ----------------------------------------------------------
    def _spawn(self, action: str, callback: TunnelCallback) -> None:
        worker = threading.Thread(
            target=self._run_daemon,
            args=(action, callback),
            name=f"browserstack-local-{action}",
            daemon=True,
        )
        worker.start()

    def _run_daemon(self, action: str, callback: TunnelCallback) -> None:
        cmd = [self.binary_path, "--daemon", action, *self._args]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.command_timeout_seconds,
            )
        except FileNotFoundError:
            callback(TunnelError(f"BrowserStackLocal binary not found: {self.binary_path}"))
            return
        except subprocess.TimeoutExpired:
            callback(
                TunnelError(
                    f"BrowserStackLocal {action} timed out after {self.command_timeout_seconds}s"
                )
            )
            return

        if action == "stop":
            if result.returncode != 0:
                callback(TunnelError(f"BrowserStackLocal stop failed: {self._excerpt(result)}"))
                return
            self._pid = None
            callback(None)
            return

        try:
            reply = json.loads(result.stdout or "")
        except json.JSONDecodeError:
            callback(TunnelError(f"Unexpected BrowserStackLocal output: {self._excerpt(result)}"))
            return
        if not isinstance(reply, dict) or reply.get("state") != "connected":
            callback(TunnelError(self._reply_message(reply)))
            return
        try:
            self._pid = int(reply["pid"])
        except (KeyError, TypeError, ValueError):
            self._pid = None
        callback(None)

    def _build_args(self, options: Dict[str, Any]) -> List[str]:
        args: List[str] = []
        for key, value in options.items():
            if value is None or value is False:
                continue
            flag = "--" + re.sub(r"(?<!^)(?=[A-Z])", "-", str(key)).lower()
            args.append(flag)
            if value is not True:
                args.append(str(value))
        return args

    def _reply_message(self, reply: Any) -> str:
        message: Any = reply.get("message") if isinstance(reply, dict) else reply
        if isinstance(message, dict):
            message = message.get("message")
        return str(message or "BrowserStackLocal failed to connect")

    def _excerpt(self, result: subprocess.CompletedProcess) -> str:
        text = f"{result.stdout or ''}\n{result.stderr or ''}".strip()
        return text[-self.failure_excerpt_max_chars :]


class TunnelManager(BaseModel):
    """Owns the tunnel state: stopped -> starting -> running -> stopping -> stopped.

    A failed start or stop moves to the terminal `failed` state. A manager is
    single use; once stopped it cannot be started again.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    binding: Any = Field(default_factory=BrowserStackLocalBinary)
    forced_stop: bool = False
    start_timeout: float | None = None
    _state: TunnelState = PrivateAttr(default=TunnelState.stopped)
    _used: bool = PrivateAttr(default=False)

    @property
    def state(self) -> TunnelState:
        return self._state

    @property
    def pid(self) -> int | None:
        return getattr(self.binding, "pid", None)

    def is_running(self) -> bool:
        return bool(self.binding.is_running())

    async def start(self, options: Dict[str, Any]) -> None:
        if self._used or self._state is not TunnelState.stopped:
            raise TunnelError(f"BrowserStack Local tunnel cannot be started from state {self._state.value}")
        self._used = True
        self._state = TunnelState.starting
        future = self._callback_future()
        try:
            self.binding.start(options, future.callback)
            await asyncio.wait_for(future.result, self.start_timeout)
        except asyncio.TimeoutError as exc:
            self._state = TunnelState.failed
            raise TunnelError(
                f"BrowserStack Local did not start within {self.start_timeout}s"
            ) from exc
        except BaseException:
            self._state = TunnelState.failed
            raise
        self._state = TunnelState.running
        logger.debug("BrowserStack Local running with pid %s", self.pid)

    async def stop(self) -> int | None:
        """Stop the tunnel; returns the killed pid when `forced_stop` applies."""
        if not self.is_running():
            if self._state is TunnelState.running:
                self._state = TunnelState.stopped
            return None
        if self.forced_stop and self.pid:
            return self.kill()

        self._state = TunnelState.stopping
        future = self._callback_future()
        try:
            self.binding.stop(future.callback)
            await future.result
        except BaseException:
            self._state = TunnelState.failed
            raise
        self._state = TunnelState.stopped
        return None

    def kill(self) -> int:
        pid = self.pid
        if not pid:
            raise TunnelError("BrowserStack Local has no recorded process id to kill")
        self._state = TunnelState.stopping
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            logger.debug("BrowserStack Local pid %s already exited", pid)
        except OSError as exc:
            self._state = TunnelState.failed
            raise TunnelError(f"Failed to kill BrowserStack Local pid {pid}: {exc}") from exc
        else:
            logger.debug("Sent SIGTERM to BrowserStack Local pid %s", pid)
        self._state = TunnelState.stopped
        return pid

    def _callback_future(self) -> "_CallbackFuture":
        return _CallbackFuture(asyncio.get_running_loop())


class _CallbackFuture:
    """Resolves an asyncio future from a binding callback fired on any thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self.result: asyncio.Future = loop.create_future()

    def callback(self, error: BaseException | None = None, *_: Any) -> None:
        self._loop.call_soon_threadsafe(self._settle, error)

    def _settle(self, error: BaseException | None) -> None:
        if self.result.done():
            return
        if error is not None:
            self.result.set_exception(error)
        else:
            self.result.set_result(None)
