"""Launch, enumerate and terminate OS processes by name pattern."""
from __future__ import annotations

import fnmatch
import logging
import os
import shlex
import subprocess
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import psutil

from .config_loader import PROCESS_PATTERN_DELIMITER
from .logging_utils import get_logger

LOGGER = get_logger("Processes")

TERMINATE_TIMEOUT_SECONDS = 3.0
KILL_TIMEOUT_SECONDS = 2.0


def is_windows() -> bool:
    return os.name == "nt"


def normalise_process_name(name: Optional[str]) -> str:
    token = (name or "").strip().lower()
    if token.endswith(".exe"):
        token = token[: -len(".exe")]
    return token


def split_process_pattern(pattern: Optional[str]) -> Tuple[str, ...]:
    """Split ``"game32|game64"`` into normalised alternatives, dropping blanks."""
    if not pattern:
        return ()
    alternatives = []
    for part in pattern.split(PROCESS_PATTERN_DELIMITER):
        token = normalise_process_name(part)
        if token and token not in alternatives:
            alternatives.append(token)
    return tuple(alternatives)


def name_matches(name: Optional[str], alternatives: Sequence[str]) -> bool:
    candidate = normalise_process_name(name)
    if not candidate:
        return False
    return any(fnmatch.fnmatchcase(candidate, alternative) for alternative in alternatives)


def split_arguments(arguments: str) -> List[str]:
    if not arguments:
        return []
    return shlex.split(arguments, posix=not is_windows())


class ProcessController:
    """Thin wrapper over psutil/subprocess so callers can swap in a fake."""

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        terminate_timeout: float = TERMINATE_TIMEOUT_SECONDS,
    ) -> None:
        self._logger = logger or LOGGER
        self._terminate_timeout = terminate_timeout

    def find(self, pattern: Optional[str]) -> List[psutil.Process]:
        alternatives = split_process_pattern(pattern)
        if not alternatives:
            return []
        matches: List[psutil.Process] = []
        for proc in psutil.process_iter(["name"]):
            name = (proc.info or {}).get("name")
            if name_matches(name, alternatives):
                matches.append(proc)
        return matches

    def is_running(self, pattern: Optional[str]) -> bool:
        return bool(self.find(pattern))

    def terminate(self, pattern: Optional[str]) -> int:
        """Terminate every process matching ``pattern``; return how many matched."""
        procs = self.find(pattern)
        if not procs:
            return 0
        for proc in procs:
            self._logger.debug("Terminating %s (pid=%s)", proc.info.get("name"), proc.pid)
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as exc:
                self._logger.warning("Access denied terminating pid=%s: %s", proc.pid, exc)
        _gone, alive = psutil.wait_procs(procs, timeout=self._terminate_timeout)
        for proc in alive:
            self._logger.debug("pid=%s ignored terminate; killing", proc.pid)
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as exc:
                self._logger.warning("Access denied killing pid=%s: %s", proc.pid, exc)
        if alive:
            _gone, survivors = psutil.wait_procs(alive, timeout=KILL_TIMEOUT_SECONDS)
            for proc in survivors:
                self._logger.warning("Process pid=%s is still running after kill", proc.pid)
        return len(procs)

    def launch(self, executable: str, arguments: str = "", cwd: Optional[str] = None) -> subprocess.Popen:
        """Start ``executable`` detached from this process and return its handle."""
        path = Path(executable)
        argv = [str(path), *split_arguments(arguments)]
        workdir = cwd or (str(path.parent) if path.is_absolute() else None)
        kwargs = {}
        if is_windows():
            kwargs["creationflags"] = getattr(subprocess, "DETACHED_PROCESS", 0) | getattr(
                subprocess, "CREATE_NEW_PROCESS_GROUP", 0
            )
        else:
            kwargs["start_new_session"] = True
        self._logger.debug("Launching %s (cwd=%s)", argv, workdir)
        return subprocess.Popen(
            argv,
            cwd=workdir,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            close_fds=True,
            **kwargs,
        )

    def open_uri(self, uri: str) -> None:
        """Hand a launcher URI (``com.epicgames.launcher://...``) to the desktop shell."""
        self._logger.debug("Opening %s", uri)
        if is_windows():
            os.startfile(uri)  # type: ignore[attr-defined]
            return
        opener = "open" if sys.platform == "darwin" else "xdg-open"
        subprocess.Popen(
            [opener, uri],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
