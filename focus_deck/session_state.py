"""Per-run session record and its lifecycle phases."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

from .config_loader import GameDefinition, IntegrationDefinition
from .obs_client import ControlPlaneClient


class SessionPhase(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    RUNNING = "running"
    TEARING_DOWN = "tearing-down"
    TERMINATED = "terminated"


_TRANSITIONS = {
    SessionPhase.IDLE: SessionPhase.PREPARING,
    SessionPhase.PREPARING: SessionPhase.RUNNING,
    SessionPhase.RUNNING: SessionPhase.TEARING_DOWN,
    SessionPhase.TEARING_DOWN: SessionPhase.TERMINATED,
}


class SessionPhaseError(RuntimeError):
    """Raised on an out-of-order phase change."""


@dataclass
class SessionState:
    game: GameDefinition
    integrations: List[IntegrationDefinition] = field(default_factory=list)
    phase: SessionPhase = SessionPhase.IDLE
    control_client: Optional[ControlPlaneClient] = None
    attempted: List[str] = field(default_factory=list)
    succeeded: Set[str] = field(default_factory=set)
    failed: Set[str] = field(default_factory=set)
    skipped: Dict[str, str] = field(default_factory=dict)
    game_detected: bool = False

    def advance(self, target: SessionPhase) -> None:
        expected = _TRANSITIONS.get(self.phase)
        if expected is not target:
            raise SessionPhaseError(f"cannot move session from {self.phase.value} to {target.value}")
        self.phase = target

    def integration(self, integration_id: str) -> Optional[IntegrationDefinition]:
        for item in self.integrations:
            if item.integration_id == integration_id:
                return item
        return None

    def record_start(self, integration_id: str, ok: bool) -> None:
        if integration_id not in self.attempted:
            self.attempted.append(integration_id)
        if ok:
            self.succeeded.add(integration_id)
        else:
            self.failed.add(integration_id)

    def teardown_order(self) -> List[str]:
        """Integrations whose start action was attempted, newest first."""
        return list(reversed(self.attempted))

    @property
    def terminated(self) -> bool:
        return self.phase is SessionPhase.TERMINATED
