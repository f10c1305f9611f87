"""Shared FastAPI dependencies."""

from edugame.config import get_settings
from edugame.database import get_store
from edugame.service import Gamification

_gamification: Gamification | None = None


def init_gamification() -> Gamification:
    """Build the component graph over the shared store."""
    global _gamification  # noqa: PLW0603
    _gamification = Gamification.build(get_store(), get_settings())
    return _gamification


def reset_gamification() -> None:
    global _gamification  # noqa: PLW0603
    _gamification = None


def get_gamification() -> Gamification:
    """Get the gamification components (FastAPI dependency)."""
    if _gamification is None:
        msg = "Gamification not initialized. Call init_gamification() first."
        raise RuntimeError(msg)
    return _gamification
