"""Start a game through its store client, a launcher URI or its executable."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

from .config_loader import GameDefinition, LaunchDescriptor
from .logging_utils import get_logger

LOGGER = get_logger("GameLauncher")

STEAM_URI = "steam://rungameid/{target}"
EPIC_URI = "com.epicgames.launcher://apps/{target}?action=launch&silent=true"
RIOT_PATCHLINE = "live"


class _LaunchSurface(Protocol):
    def launch(self, executable: str, arguments: str = "", cwd: Optional[str] = None) -> Any: ...
    def open_uri(self, uri: str) -> None: ...


@dataclass(frozen=True)
class LaunchCommand:
    executable: Optional[str] = None
    arguments: str = ""
    uri: Optional[str] = None

    def describe(self) -> str:
        if self.uri:
            return self.uri
        return f"{self.executable} {self.arguments}".strip()


def _join(*parts: str) -> str:
    return " ".join(part for part in parts if part)


def _usable_path(paths: Mapping[str, str], key: str) -> Optional[str]:
    value = paths.get(key)
    if value and Path(value).is_file():
        return value
    return None


def build_launch_command(launch: LaunchDescriptor, paths: Mapping[str, str]) -> Optional[LaunchCommand]:
    """Translate a launch descriptor into a command; None when there is nothing to run."""
    platform, target = launch.platform, launch.target
    if platform == "none" or not target:
        return None
    if platform == "steam":
        steam = _usable_path(paths, "steam")
        if steam:
            return LaunchCommand(executable=steam, arguments=_join("-applaunch", target, launch.arguments))
        return LaunchCommand(uri=STEAM_URI.format(target=target))
    if platform == "epic":
        return LaunchCommand(uri=EPIC_URI.format(target=target))
    if platform == "riot":
        riot = _usable_path(paths, "riot")
        if not riot:
            return None
        return LaunchCommand(
            executable=riot,
            arguments=_join(f"--launch-product={target}", f"--launch-patchline={RIOT_PATCHLINE}", launch.arguments),
        )
    if platform == "direct":
        return LaunchCommand(executable=target, arguments=launch.arguments)
    return None


class GameLauncher:
    def __init__(
        self,
        processes: _LaunchSurface,
        paths: Optional[Mapping[str, str]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._processes = processes
        self._paths = dict(paths or {})
        self._logger = logger or LOGGER

    def launch(self, game: GameDefinition) -> bool:
        command = build_launch_command(game.launch, self._paths)
        if command is None:
            self._logger.info(
                "No launch command for %s (platform=%s); expecting it to be started manually",
                game.name,
                game.launch.platform,
            )
            return False
        self._logger.debug("Launching %s: %s", game.name, command.describe())
        try:
            if command.uri:
                self._processes.open_uri(command.uri)
            else:
                if not Path(command.executable or "").is_file():
                    self._logger.error("%s: launcher executable %s not found", game.name, command.executable)
                    return False
                self._processes.launch(command.executable, command.arguments)
        except OSError as exc:
            self._logger.error("Failed to launch %s: %s", game.name, exc)
            return False
        return True
