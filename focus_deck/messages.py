"""Human-readable log messages with optional localized overrides."""
from __future__ import annotations

import json
import locale
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from .logging_utils import get_logger

LOGGER = get_logger("Messages")

DEFAULT_LANGUAGE = "en"

DEFAULT_MESSAGES: Dict[str, str] = {
    "session_starting": "Starting session for {game}",
    "session_start_failed": "Unable to start a session for {game}",
    "unknown_game": "Game '{game}' is not defined in the configuration",
    "integration_skipped": "Skipping {integration}: {reason}",
    "integration_unknown": "not defined in managedApps",
    "start_action": "Applying start action {action} to {integration}",
    "stop_action": "Applying stop action {action} to {integration}",
    "action_failed": "{integration}: {action} did not complete",
    "game_launching": "Launching {game} via {platform}",
    "game_launch_failed": "Could not launch {game}; continuing without a launch",
    "waiting_for_game": "Waiting up to {timeout}s for {game} to start",
    "game_not_detected": "{game} was not detected within {timeout}s; monitoring anyway",
    "game_detected": "{game} is running",
    "monitoring_game": "Monitoring {game} ({pattern})",
    "game_exited": "{game} has exited; restoring applications",
    "session_complete": "Session for {game} finished ({started} started, {failed} failed)",
    "session_interrupted": "Session for {game} interrupted",
}

Lookup = Callable[[str], str]


class MessageCatalog:
    """Key to template lookup that degrades to the key itself."""

    def __init__(self, messages: Optional[Mapping[str, str]] = None, language: str = DEFAULT_LANGUAGE) -> None:
        self.language = language
        self._messages: Dict[str, str] = dict(DEFAULT_MESSAGES)
        if messages:
            self._messages.update({str(key): str(value) for key, value in messages.items()})

    def lookup(self, key: str) -> str:
        return self._messages.get(key, key)

    __call__ = lookup


def format_message(lookup: Lookup, key: str, **fields: Any) -> str:
    """Render ``key`` through ``lookup``; fall back to the raw template on bad placeholders."""
    template = lookup(key)
    details = " ".join(f"{name}={value}" for name, value in fields.items())
    if template == key and details:
        # Untranslated key: keep the values readable.
        return f"{key} ({details})"
    try:
        return template.format(**fields)
    except (KeyError, IndexError, ValueError):
        return f"{template} ({details})" if details else template


def system_language() -> str:
    try:
        code = locale.getlocale()[0] or ""
    except ValueError:
        code = ""
    token = code.replace("-", "_").split("_", 1)[0].lower()
    return token or DEFAULT_LANGUAGE


def load_message_catalog(path: Optional[Path], language: Optional[str] = None) -> MessageCatalog:
    """Load ``{"<lang>": {"<key>": "<template>"}}`` and select ``language``.

    A missing or unreadable file yields the built-in English catalog.
    """
    chosen = (language or "").strip().lower() or system_language()
    if path is None:
        return MessageCatalog(language=chosen)
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8-sig"))
    except FileNotFoundError:
        LOGGER.debug("Message file %s not found; using built-in messages", path)
        return MessageCatalog(language=chosen)
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("Unable to read message file %s: %s", path, exc)
        return MessageCatalog(language=chosen)
    if not isinstance(raw, Mapping):
        LOGGER.warning("Message file %s must contain a JSON object", path)
        return MessageCatalog(language=chosen)
    table = raw.get(chosen)
    if not isinstance(table, Mapping):
        LOGGER.debug("No '%s' messages in %s; falling back to %s", chosen, path, DEFAULT_LANGUAGE)
        table = raw.get(DEFAULT_LANGUAGE)
        chosen = DEFAULT_LANGUAGE
    return MessageCatalog(table if isinstance(table, Mapping) else None, language=chosen)
