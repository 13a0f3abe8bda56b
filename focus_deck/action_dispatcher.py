"""Map an (integration, verb) pair onto its concrete effect.

Every handler returns a boolean. Integration problems are logged here and
reported upward as ``False``; exceptions never leave :meth:`ActionDispatcher.invoke`.
"""
from __future__ import annotations

import logging
import os
import platform
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

from .config_loader import (
    ActionVerb,
    IntegrationDefinition,
    SessionSettings,
    WebSocketSettings,
    parse_verb,
)
from .logging_utils import get_logger
from .obs_client import ControlPlaneClient
from .obs_protocol import AuthenticationError, ConnectionClosedError, ControlPlaneError
from .process_control import ProcessController
from .session_state import SessionState

LOGGER = get_logger("Dispatcher")

RENDER_CONTROL_ARGUMENTS = {
    ActionVerb.PAUSE_RENDER: "-control pause",
    ActionVerb.RESUME_RENDER: "-control play",
}

ClientFactory = Callable[..., ControlPlaneClient]


class _ProcessSurface(Protocol):
    def is_running(self, pattern: Optional[str]) -> bool: ...
    def terminate(self, pattern: Optional[str]) -> int: ...
    def launch(self, executable: str, arguments: str = "", cwd: Optional[str] = None) -> Any: ...


@dataclass(frozen=True)
class ActionContext:
    state: SessionState
    integration: IntegrationDefinition
    verb: ActionVerb


def is_64bit_os() -> bool:
    # A 32-bit interpreter on 64-bit Windows reports x86 but exposes the real arch here.
    if os.environ.get("PROCESSOR_ARCHITEW6432"):
        return True
    return platform.machine().lower().endswith("64")


def resolve_render_executable(configured: Optional[str], prefer_64bit: bool) -> Optional[Path]:
    """Pick the installed renderer binary.

    On a 64-bit OS a sibling whose name swaps the last ``32`` for ``64``
    (``wallpaper32.exe`` -> ``wallpaper64.exe``) wins when it exists;
    otherwise the configured path is used if present.
    """
    if not configured:
        return None
    path = Path(configured)
    candidates = []
    if prefer_64bit:
        name = path.name
        index = name.rfind("32")
        if index != -1:
            candidates.append(path.with_name(f"{name[:index]}64{name[index + 2:]}"))
    candidates.append(path)
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def process_pattern_for(integration: IntegrationDefinition) -> str:
    if integration.process_pattern:
        return integration.process_pattern
    if integration.executable:
        return Path(integration.executable).stem
    return ""


class ActionDispatcher:
    def __init__(
        self,
        processes: Optional[_ProcessSurface] = None,
        *,
        client_factory: Optional[ClientFactory] = None,
        settings: Optional[SessionSettings] = None,
        prefer_64bit: Optional[bool] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.processes = processes or ProcessController()
        self.client_factory: ClientFactory = client_factory or ControlPlaneClient
        self.settings = settings or SessionSettings()
        self.prefer_64bit = is_64bit_os() if prefer_64bit is None else prefer_64bit
        self.sleep = sleep
        self.logger = logger or LOGGER

    def invoke(self, state: SessionState, integration_id: str, verb: Any) -> bool:
        integration = state.integration(integration_id)
        if integration is None:
            self.logger.error("Integration %s is not part of this session", integration_id)
            return False
        try:
            action = parse_verb(verb)
        except ValueError:
            self.logger.error("%s: unknown action verb %r", integration_id, verb)
            return False
        handler = _HANDLERS.get(action)
        if handler is None:
            self.logger.error("%s: no handler for %s", integration_id, action.value)
            return False
        context = ActionContext(state=state, integration=integration, verb=action)
        try:
            ok = bool(handler(self, context))
        except Exception as exc:
            self.logger.error(
                "%s: %s raised %s",
                integration_id,
                action.value,
                exc,
                exc_info=self.logger.isEnabledFor(logging.DEBUG),
            )
            return False
        self.logger.debug("%s: %s -> %s", integration_id, action.value, "ok" if ok else "failed")
        return ok

    # Shared helpers -----------------------------------------------------

    def existing_executable(self, integration: IntegrationDefinition) -> Optional[Path]:
        if not integration.executable:
            self.logger.error("%s: no executable path configured", integration.integration_id)
            return None
        path = Path(integration.executable)
        if not path.is_file():
            self.logger.error("%s: executable not found at %s", integration.integration_id, path)
            return None
        return path

    def launch(self, integration: IntegrationDefinition, executable: Path, arguments: str) -> bool:
        try:
            handle = self.processes.launch(str(executable), arguments)
        except OSError as exc:
            self.logger.error("%s: failed to launch %s: %s", integration.integration_id, executable, exc)
            return False
        self.logger.info(
            "%s: launched %s (pid=%s)",
            integration.integration_id,
            executable.name,
            getattr(handle, "pid", "?"),
        )
        return True


# Handlers -----------------------------------------------------------------


def _start_process(dispatcher: ActionDispatcher, context: ActionContext) -> bool:
    integration = context.integration
    executable = dispatcher.existing_executable(integration)
    if executable is None:
        return False
    pattern = process_pattern_for(integration)
    if pattern and dispatcher.processes.is_running(pattern):
        dispatcher.logger.info("%s: already running", integration.integration_id)
        return True
    return dispatcher.launch(integration, executable, integration.arguments)


def _stop_process(dispatcher: ActionDispatcher, context: ActionContext) -> bool:
    integration = context.integration
    pattern = process_pattern_for(integration)
    if not pattern:
        dispatcher.logger.error("%s: no process name or executable to stop", integration.integration_id)
        return False
    stopped = dispatcher.processes.terminate(pattern)
    if stopped:
        dispatcher.logger.info("%s: stopped %d process(es)", integration.integration_id, stopped)
    else:
        dispatcher.logger.info("%s: not running; nothing to stop", integration.integration_id)
    return True


def _toggle_hotkeys(dispatcher: ActionDispatcher, context: ActionContext) -> bool:
    integration = context.integration
    executable = dispatcher.existing_executable(integration)
    if executable is None:
        return False
    return dispatcher.launch(integration, executable, integration.arguments)


def _control_render(dispatcher: ActionDispatcher, context: ActionContext) -> bool:
    integration = context.integration
    executable = resolve_render_executable(integration.executable, dispatcher.prefer_64bit)
    if executable is None:
        dispatcher.logger.error(
            "%s: no installed renderer found for %s",
            integration.integration_id,
            integration.executable or "<unset>",
        )
        return False
    arguments = RENDER_CONTROL_ARGUMENTS[context.verb]
    if integration.arguments:
        arguments = f"{arguments} {integration.arguments}"
    return dispatcher.launch(integration, executable, arguments)


def _ensure_control_host_running(dispatcher: ActionDispatcher, integration: IntegrationDefinition) -> bool:
    """Launch the streaming tool when it has a path and is not up yet; True if launched."""
    if not integration.executable:
        return False
    pattern = process_pattern_for(integration)
    if pattern and dispatcher.processes.is_running(pattern):
        return False
    executable = dispatcher.existing_executable(integration)
    if executable is None:
        return False
    return dispatcher.launch(integration, executable, integration.arguments)


def _open_control_session(dispatcher: ActionDispatcher, context: ActionContext) -> bool:
    state, integration = context.state, context.integration
    existing = state.control_client
    if existing is not None and existing.connected:
        dispatcher.logger.debug("%s: control session already open", integration.integration_id)
        return True

    settings = integration.websocket or WebSocketSettings()
    _ensure_control_host_running(dispatcher, integration)
    client = dispatcher.client_factory(settings.host, settings.port, timeout=dispatcher.settings.control_timeout)
    attempts = max(1, dispatcher.settings.control_connect_attempts)
    for attempt in range(1, attempts + 1):
        try:
            client.connect(settings.password)
            break
        except AuthenticationError as exc:
            dispatcher.logger.error("%s: authentication rejected: %s", integration.integration_id, exc)
            client.close()
            return False
        except ConnectionClosedError as exc:
            if attempt >= attempts:
                dispatcher.logger.error(
                    "%s: unable to reach %s after %d attempt(s): %s",
                    integration.integration_id,
                    settings.url,
                    attempts,
                    exc,
                )
                client.close()
                return False
            dispatcher.logger.debug(
                "%s: connect attempt %d/%d failed (%s); retrying",
                integration.integration_id,
                attempt,
                attempts,
                exc,
            )
            dispatcher.sleep(dispatcher.settings.control_retry_delay)
        except ControlPlaneError as exc:
            dispatcher.logger.error("%s: handshake failed: %s", integration.integration_id, exc)
            client.close()
            return False

    state.control_client = client
    if integration.replay_buffer:
        try:
            if client.start_replay_buffer():
                dispatcher.logger.info("%s: replay buffer started", integration.integration_id)
        except ControlPlaneError as exc:
            dispatcher.logger.warning("%s: could not start replay buffer: %s", integration.integration_id, exc)
            return False
    return True


def _close_control_session(dispatcher: ActionDispatcher, context: ActionContext) -> bool:
    state, integration = context.state, context.integration
    client = state.control_client
    state.control_client = None
    if client is None or not client.connected:
        dispatcher.logger.info("%s: no open control session to close", integration.integration_id)
        if client is not None:
            client.close()
        return True
    ok = True
    if integration.replay_buffer:
        try:
            if client.stop_replay_buffer():
                dispatcher.logger.info("%s: replay buffer stopped", integration.integration_id)
        except ControlPlaneError as exc:
            dispatcher.logger.warning("%s: could not stop replay buffer: %s", integration.integration_id, exc)
            ok = False
    client.close()
    return ok


def _no_action(dispatcher: ActionDispatcher, context: ActionContext) -> bool:
    return True


_HANDLERS: Dict[ActionVerb, Callable[[ActionDispatcher, ActionContext], bool]] = {
    ActionVerb.START_PROCESS: _start_process,
    ActionVerb.STOP_PROCESS: _stop_process,
    ActionVerb.TOGGLE_HOTKEYS: _toggle_hotkeys,
    ActionVerb.PAUSE_RENDER: _control_render,
    ActionVerb.RESUME_RENDER: _control_render,
    ActionVerb.OPEN_CONTROL_SESSION: _open_control_session,
    ActionVerb.CLOSE_CONTROL_SESSION: _close_control_session,
    ActionVerb.NONE: _no_action,
}
