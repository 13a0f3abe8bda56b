"""Load the Focus Game Deck JSON configuration into immutable definitions.

Entry-level problems do not fail the load: a managed app with
an unknown action verb or a malformed websocket block is recorded in
``DeckConfig.invalid_integrations`` and skipped later, while the rest of the
configuration stays usable. Only an unreadable file (missing, not JSON, not
a JSON object) raises :class:`ConfigError`.
"""
from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from .logging_utils import get_logger

LOGGER = get_logger("Config")

CONFIG_ENV_VAR = "FOCUS_DECK_CONFIG"
CONTROL_INTEGRATION_ID = "obs"
DEFAULT_WEBSOCKET_HOST = "localhost"
DEFAULT_WEBSOCKET_PORT = 4455
PROCESS_PATTERN_DELIMITER = "|"


class ConfigError(Exception):
    """Raised when the configuration input cannot be read at all."""


class ActionVerb(str, Enum):
    START_PROCESS = "start-process"
    STOP_PROCESS = "stop-process"
    TOGGLE_HOTKEYS = "toggle-hotkeys"
    PAUSE_RENDER = "pause-render"
    RESUME_RENDER = "resume-render"
    OPEN_CONTROL_SESSION = "open-control-session"
    CLOSE_CONTROL_SESSION = "close-control-session"
    NONE = "none"


# Older configs name the renderer verbs after the wallpaper tool.
_VERB_ALIASES = {
    "pause-wallpaper": ActionVerb.PAUSE_RENDER,
    "play-wallpaper": ActionVerb.RESUME_RENDER,
    "resume-wallpaper": ActionVerb.RESUME_RENDER,
}


def parse_verb(value: Any) -> ActionVerb:
    """Map a config token onto the closed verb set; raise ValueError otherwise."""
    if isinstance(value, ActionVerb):
        return value
    if value is None:
        return ActionVerb.NONE
    token = str(value).strip().lower()
    if not token:
        return ActionVerb.NONE
    if token in _VERB_ALIASES:
        return _VERB_ALIASES[token]
    return ActionVerb(token)


@dataclass(frozen=True)
class WebSocketSettings:
    host: str = DEFAULT_WEBSOCKET_HOST
    port: int = DEFAULT_WEBSOCKET_PORT
    password: str = field(default="", repr=False)

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"


@dataclass(frozen=True)
class IntegrationDefinition:
    integration_id: str
    start_verb: ActionVerb
    stop_verb: ActionVerb
    executable: Optional[str] = None
    process_pattern: str = ""
    arguments: str = ""
    websocket: Optional[WebSocketSettings] = None
    replay_buffer: bool = False


@dataclass(frozen=True)
class LaunchDescriptor:
    platform: str = "none"
    target: str = ""
    arguments: str = ""


@dataclass(frozen=True)
class GameDefinition:
    game_id: str
    name: str
    process_pattern: str
    launch: LaunchDescriptor = field(default_factory=LaunchDescriptor)
    integration_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SessionSettings:
    poll_interval: float = 2.0
    startup_timeout: float = 180.0
    control_timeout: float = 5.0
    control_connect_attempts: int = 3
    control_retry_delay: float = 2.0


@dataclass
class DeckConfig:
    games: Dict[str, GameDefinition] = field(default_factory=dict)
    integrations: Dict[str, IntegrationDefinition] = field(default_factory=dict)
    invalid_integrations: Dict[str, str] = field(default_factory=dict)
    paths: Dict[str, str] = field(default_factory=dict)
    language: str = ""
    session: SessionSettings = field(default_factory=SessionSettings)
    source: Optional[Path] = None

    def game(self, game_id: str) -> Optional[GameDefinition]:
        return self.games.get(game_id)


def _coerce_positive_float(value: Any, fallback: float, *, minimum: float = 0.0) -> float:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(numeric) or numeric < minimum:
        return fallback
    return numeric


def _coerce_positive_int(value: Any, fallback: int, *, minimum: int = 1) -> int:
    try:
        numeric = int(value)
    except (TypeError, ValueError, OverflowError):
        return fallback
    if numeric < minimum:
        return fallback
    return numeric


_TRUE_TOKENS = {"1", "true", "yes", "on"}
_FALSE_TOKENS = {"0", "false", "no", "off"}


def _coerce_bool(value: Any, fallback: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        token = value.strip().lower()
        if token in _TRUE_TOKENS:
            return True
        if token in _FALSE_TOKENS:
            return False
    return fallback


def _clean_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_path(value: Any) -> Optional[str]:
    text = _clean_str(value)
    return text or None


def parse_session_settings(raw: Any) -> SessionSettings:
    defaults = SessionSettings()
    if not isinstance(raw, Mapping):
        return defaults
    return SessionSettings(
        poll_interval=_coerce_positive_float(raw.get("pollIntervalSeconds"), defaults.poll_interval, minimum=0.1),
        startup_timeout=_coerce_positive_float(raw.get("startupTimeoutSeconds"), defaults.startup_timeout),
        control_timeout=_coerce_positive_float(raw.get("controlTimeoutSeconds"), defaults.control_timeout, minimum=0.1),
        control_connect_attempts=_coerce_positive_int(
            raw.get("controlConnectAttempts"), defaults.control_connect_attempts
        ),
        control_retry_delay=_coerce_positive_float(raw.get("controlRetryDelaySeconds"), defaults.control_retry_delay),
    )


def parse_websocket_settings(raw: Any) -> WebSocketSettings:
    if raw is None:
        return WebSocketSettings()
    if not isinstance(raw, Mapping):
        raise ValueError("websocket settings must be an object")
    host = _clean_str(raw.get("host")) or DEFAULT_WEBSOCKET_HOST
    port_raw = raw.get("port", DEFAULT_WEBSOCKET_PORT)
    try:
        port = int(port_raw)
    except (TypeError, ValueError):
        raise ValueError(f"websocket port {port_raw!r} is not a number") from None
    if not 0 < port < 65536:
        raise ValueError(f"websocket port {port} is out of range")
    password = raw.get("password") or ""
    if not isinstance(password, str):
        raise ValueError("websocket password must be a string")
    return WebSocketSettings(host=host, port=port, password=password)


def parse_integration(integration_id: str, raw: Mapping[str, Any], *, control_defaults: bool = False) -> IntegrationDefinition:
    """Build one integration definition; raises ValueError on a bad entry."""
    default_start = ActionVerb.OPEN_CONTROL_SESSION if control_defaults else ActionVerb.NONE
    default_stop = ActionVerb.CLOSE_CONTROL_SESSION if control_defaults else ActionVerb.NONE
    start_raw = raw.get("gameStartAction")
    stop_raw = raw.get("gameEndAction")
    start_verb = default_start if start_raw is None else parse_verb(start_raw)
    stop_verb = default_stop if stop_raw is None else parse_verb(stop_raw)

    websocket: Optional[WebSocketSettings] = None
    control_verbs = {ActionVerb.OPEN_CONTROL_SESSION, ActionVerb.CLOSE_CONTROL_SESSION}
    if "websocket" in raw or start_verb in control_verbs or stop_verb in control_verbs:
        websocket = parse_websocket_settings(raw.get("websocket"))

    return IntegrationDefinition(
        integration_id=integration_id,
        start_verb=start_verb,
        stop_verb=stop_verb,
        executable=_optional_path(raw.get("path")),
        process_pattern=_clean_str(raw.get("processName")),
        arguments=_clean_str(raw.get("arguments")),
        websocket=websocket,
        replay_buffer=_coerce_bool(raw.get("replayBuffer")),
    )


def parse_launch_descriptor(raw: Mapping[str, Any]) -> LaunchDescriptor:
    arguments = _clean_str(raw.get("launchArguments"))
    platform = _clean_str(raw.get("platform")).lower()
    targets = {
        "steam": _clean_str(raw.get("steamAppId")),
        "epic": _clean_str(raw.get("epicGameId")),
        "riot": _clean_str(raw.get("riotGameId")),
        "direct": _clean_str(raw.get("executablePath")),
    }
    if platform == "standalone":
        platform = "direct"
    if not platform:
        if targets["steam"]:
            platform = "steam"
        elif targets["direct"]:
            platform = "direct"
        else:
            platform = "none"
    return LaunchDescriptor(platform=platform, target=targets.get(platform, ""), arguments=arguments)


def parse_game(game_id: str, raw: Mapping[str, Any]) -> GameDefinition:
    apps = raw.get("appsToManage") or ()
    if not isinstance(apps, (list, tuple)):
        raise ValueError("appsToManage must be a list")
    integration_ids = tuple(token for token in (_clean_str(app) for app in apps) if token)
    pattern = _clean_str(raw.get("processName"))
    if not pattern:
        raise ValueError("processName is required")
    return GameDefinition(
        game_id=game_id,
        name=_clean_str(raw.get("name")) or game_id,
        process_pattern=pattern,
        launch=parse_launch_descriptor(raw),
        integration_ids=integration_ids,
    )


def parse_config(data: Mapping[str, Any], *, source: Optional[Path] = None) -> DeckConfig:
    config = DeckConfig(source=source)
    config.language = _clean_str(data.get("language"))
    config.session = parse_session_settings(data.get("session"))

    paths = data.get("paths")
    if isinstance(paths, Mapping):
        config.paths = {str(key): _clean_str(value) for key, value in paths.items() if _clean_str(value)}

    raw_apps: Dict[str, Tuple[Any, bool]] = {}
    obs_block = data.get("obs")
    if isinstance(obs_block, Mapping):
        raw_apps[CONTROL_INTEGRATION_ID] = (obs_block, True)
    managed = data.get("managedApps")
    if isinstance(managed, Mapping):
        for app_id, raw in managed.items():
            raw_apps[str(app_id)] = (raw, str(app_id) == CONTROL_INTEGRATION_ID)

    for app_id, (raw, control_defaults) in raw_apps.items():
        if not isinstance(raw, Mapping):
            config.invalid_integrations[app_id] = "entry is not an object"
            LOGGER.warning("Managed app %s ignored: entry is not an object", app_id)
            continue
        try:
            config.integrations[app_id] = parse_integration(app_id, raw, control_defaults=control_defaults)
        except ValueError as exc:
            config.invalid_integrations[app_id] = str(exc)
            LOGGER.warning("Managed app %s ignored: %s", app_id, exc)

    games = data.get("games")
    if isinstance(games, Mapping):
        for game_id, raw in games.items():
            if not isinstance(raw, Mapping):
                LOGGER.warning("Game %s ignored: entry is not an object", game_id)
                continue
            try:
                config.games[str(game_id)] = parse_game(str(game_id), raw)
            except ValueError as exc:
                LOGGER.warning("Game %s ignored: %s", game_id, exc)
    return config


def resolve_config_path(explicit: Optional[str] = None) -> Path:
    if explicit:
        return Path(explicit).expanduser().resolve()
    env_override = os.getenv(CONFIG_ENV_VAR)
    if env_override:
        return Path(env_override).expanduser().resolve()
    return (Path.cwd() / "config" / "config.json").resolve()


def load_config(path: Path) -> DeckConfig:
    try:
        text = Path(path).read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise ConfigError(f"Unable to read configuration {path}: {exc}") from exc
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Configuration {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Configuration {path} must contain a JSON object")
    config = parse_config(data, source=Path(path))
    LOGGER.debug(
        "Loaded configuration from %s: games=%d integrations=%d invalid=%d",
        path,
        len(config.games),
        len(config.integrations),
        len(config.invalid_integrations),
    )
    return config
