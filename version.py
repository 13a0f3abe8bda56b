"""Version identifier and build-flavour helpers for Focus Game Deck."""
from __future__ import annotations

import os
from typing import Optional, Tuple

__all__ = ["__version__", "DEV_MODE_ENV_VAR", "describe_build", "is_dev_build", "version_tuple"]

__version__ = "1.2.0-dev"
DEV_MODE_ENV_VAR = "FOCUS_DECK_DEV_MODE"

_TRUE_TOKENS = {"1", "true", "yes", "on"}
_FALSE_TOKENS = {"0", "false", "no", "off"}


def _env_flag(name: str) -> Optional[bool]:
    value = os.getenv(name)
    if value is None:
        return None
    token = value.strip().lower()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    return None


def is_dev_build(version: Optional[str] = None) -> bool:
    """Return True when verbose, developer-oriented defaults should apply.

    ``FOCUS_DECK_DEV_MODE`` wins when set to a recognised boolean token;
    otherwise the version string decides (``-dev`` suffix, ``.devN`` or a
    bare ``dev`` segment).
    """

    override = _env_flag(DEV_MODE_ENV_VAR)
    if override is not None:
        return override

    identifier = (version or __version__ or "").strip().lower()
    if not identifier:
        return False
    if identifier.endswith("-dev") or ".dev" in identifier:
        return True
    return "dev" in identifier.replace(".", "-").split("-")


def version_tuple(version: Optional[str] = None) -> Tuple[int, ...]:
    """Numeric release components, stopping at the first non-numeric segment."""

    parts = []
    for segment in (version or __version__).split("-", 1)[0].split("."):
        if not segment.isdigit():
            break
        parts.append(int(segment))
    return tuple(parts)


def describe_build(version: Optional[str] = None) -> str:
    identifier = version or __version__
    flavour = "dev build" if is_dev_build(identifier) else "release"
    return f"{identifier} ({flavour})"
