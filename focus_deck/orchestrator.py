"""Drive one game session from preparation to teardown.

A session walks ``Idle -> Preparing -> Running -> TearingDown ->
Terminated`` on the caller's thread. Start actions run in configured order;
stop actions run in reverse for every integration whose start action was
attempted. Individual integration failures are logged and never stop the
walk: once the game process is gone the session always terminates.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional

from .action_dispatcher import ActionDispatcher
from .config_loader import DeckConfig, IntegrationDefinition
from .game_launcher import GameLauncher
from .logging_utils import get_logger
from .messages import Lookup, MessageCatalog, format_message
from .process_control import ProcessController
from .process_monitor import ProcessWatcher
from .session_state import SessionPhase, SessionPhaseError, SessionState

LOGGER = get_logger("Session")


class SessionOrchestrator:
    def __init__(
        self,
        config: DeckConfig,
        *,
        dispatcher: Optional[ActionDispatcher] = None,
        watcher: Optional[ProcessWatcher] = None,
        launcher: Optional[GameLauncher] = None,
        processes: Optional[ProcessController] = None,
        translate: Optional[Lookup] = None,
        launch_game: bool = True,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        processes = processes or ProcessController()
        self.config = config
        self.dispatcher = dispatcher or ActionDispatcher(processes, settings=config.session)
        self.watcher = watcher or ProcessWatcher(processes, config.session.poll_interval)
        self.launcher = launcher or GameLauncher(processes, config.paths)
        self.launch_game = launch_game
        self._translate: Lookup = translate or MessageCatalog(language=config.language or "en").lookup
        self._logger = logger or LOGGER

    # Public API ---------------------------------------------------------

    def run(self, game_id: str) -> bool:
        """Run a full session; True once it reaches ``Terminated``."""
        state = self.create_session(game_id)
        if state is None:
            return False
        try:
            self.prepare(state)
            self.monitor(state)
            self.end_session(state)
        except KeyboardInterrupt:
            self._say(logging.WARNING, "session_interrupted", game=state.game.name)
            raise
        finally:
            self._release(state)
        return state.terminated

    def start_session(self, game_id: str) -> Optional[SessionState]:
        state = self.create_session(game_id)
        if state is not None:
            self.prepare(state)
        return state

    def create_session(self, game_id: str) -> Optional[SessionState]:
        game = self.config.game(game_id)
        if game is None:
            self._say(logging.ERROR, "unknown_game", game=game_id)
            self._say(logging.ERROR, "session_start_failed", game=game_id)
            return None
        return SessionState(game=game)

    def prepare(self, state: SessionState) -> SessionState:
        state.advance(SessionPhase.PREPARING)
        game = state.game
        self._say(logging.INFO, "session_starting", game=game.name)
        state.integrations = self.resolve_integrations(state)

        for integration in state.integrations:
            self._say(logging.INFO, "start_action", action=integration.start_verb.value, integration=integration.integration_id)
            ok = self._invoke(state, integration, integration.start_verb)
            state.record_start(integration.integration_id, ok)

        if self.launch_game:
            self._say(logging.INFO, "game_launching", game=game.name, platform=game.launch.platform)
            if not self._safe_launch(state):
                self._say(logging.WARNING, "game_launch_failed", game=game.name)

        timeout = self.config.session.startup_timeout
        self._say(logging.INFO, "waiting_for_game", game=game.name, timeout=f"{timeout:g}")
        state.game_detected = self.watcher.wait_for_start(game.process_pattern, timeout)
        if state.game_detected:
            self._say(logging.INFO, "game_detected", game=game.name)
        else:
            self._say(logging.WARNING, "game_not_detected", game=game.name, timeout=f"{timeout:g}")

        state.advance(SessionPhase.RUNNING)
        self._say(logging.INFO, "monitoring_game", game=game.name, pattern=game.process_pattern)
        return state

    def monitor(self, state: SessionState) -> SessionState:
        """Block until the game process is absent, then enter teardown."""
        if state.phase is not SessionPhase.RUNNING:
            raise SessionPhaseError(f"cannot monitor a session in phase {state.phase.value}")
        self.watcher.watch_for(state.game.process_pattern)
        self._say(logging.INFO, "game_exited", game=state.game.name)
        state.advance(SessionPhase.TEARING_DOWN)
        return state

    def end_session(self, state: SessionState) -> SessionState:
        if state.phase is not SessionPhase.TEARING_DOWN:
            raise SessionPhaseError(f"cannot tear down a session in phase {state.phase.value}")
        stop_failures = 0
        for integration_id in state.teardown_order():
            integration = state.integration(integration_id)
            if integration is None:
                continue
            self._say(logging.INFO, "stop_action", action=integration.stop_verb.value, integration=integration_id)
            if not self._invoke(state, integration, integration.stop_verb):
                stop_failures += 1
        self._release(state)
        state.advance(SessionPhase.TERMINATED)
        self._say(
            logging.INFO,
            "session_complete",
            game=state.game.name,
            started=len(state.succeeded),
            failed=len(state.failed) + stop_failures,
        )
        return state

    def resolve_integrations(self, state: SessionState) -> List[IntegrationDefinition]:
        resolved: List[IntegrationDefinition] = []
        seen = set()
        for integration_id in state.game.integration_ids:
            if integration_id in seen:
                continue
            seen.add(integration_id)
            integration = self.config.integrations.get(integration_id)
            if integration is None:
                reason = self.config.invalid_integrations.get(integration_id) or self._translate("integration_unknown")
                state.skipped[integration_id] = reason
                self._say(logging.WARNING, "integration_skipped", integration=integration_id, reason=reason)
                continue
            resolved.append(integration)
        return resolved

    # Internal helpers ---------------------------------------------------

    def _invoke(self, state: SessionState, integration: IntegrationDefinition, verb: Any) -> bool:
        try:
            ok = self.dispatcher.invoke(state, integration.integration_id, verb)
        except Exception as exc:
            self._logger.error("%s: unexpected dispatcher error: %s", integration.integration_id, exc)
            ok = False
        if not ok:
            self._say(
                logging.WARNING,
                "action_failed",
                integration=integration.integration_id,
                action=getattr(verb, "value", verb),
            )
        return ok

    def _safe_launch(self, state: SessionState) -> bool:
        try:
            return self.launcher.launch(state.game)
        except Exception as exc:
            self._logger.error("Launching %s raised %s", state.game.name, exc)
            return False

    def _release(self, state: SessionState) -> None:
        client = state.control_client
        state.control_client = None
        if client is not None:
            self._logger.debug("Closing leftover control-plane connection")
            client.close()

    def _say(self, level: int, key: str, **fields: Any) -> None:
        if self._logger.isEnabledFor(level):
            self._logger.log(level, "%s", format_message(self._translate, key, **fields))
