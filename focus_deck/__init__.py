"""Game session orchestration for Focus Game Deck."""
from version import __version__

__all__ = ["__version__"]
