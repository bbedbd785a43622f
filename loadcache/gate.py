"""
Readiness gate consulted before any real fetch.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from shared.logging import get_logger

from .models import Principal, ReadinessState

Predicate = Callable[[Optional[Principal]], bool]


@dataclass(frozen=True)
class GateDecision:
    """Outcome of a gate check."""
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


def any_principal(principal: Optional[Principal]) -> bool:
    """Default predicate: any authenticated principal may load."""
    return principal is not None


def role_predicate(*roles: str) -> Predicate:
    """Build a predicate allowing principals whose role is one of ``roles``."""
    allowed_roles = frozenset(roles)

    def predicate(principal: Optional[Principal]) -> bool:
        return principal is not None and principal.role in allowed_roles

    predicate.__name__ = f"role_in_{'_'.join(sorted(allowed_roles)) or 'none'}"
    return predicate


class Gate:
    """Combines the settled readiness state with a caller-supplied predicate.

    ``allowed = initialized and not settling and predicate(principal)``.
    A predicate that raises is treated according to ``fail_open``.
    """

    def __init__(self, predicate: Optional[Predicate] = None, fail_open: bool = False,
                 state: Optional[ReadinessState] = None):
        self.predicate = predicate or any_principal
        self.fail_open = fail_open
        self._state = state or ReadinessState()
        self.logger = get_logger("loadcache.gate")

    @property
    def state(self) -> ReadinessState:
        return self._state

    def update(self, state: ReadinessState) -> None:
        """Replace the readiness state. Called with settled states only."""
        previous = self._state
        self._state = state
        if previous != state:
            self.logger.debug(
                "Gate readiness updated",
                initialized=state.initialized,
                settling=state.settling,
                principal_id=state.principal_id,
            )

    def can_load(self) -> GateDecision:
        state = self._state
        if not state.initialized:
            return GateDecision(False, "not_initialized")
        if state.settling:
            return GateDecision(False, "settling")

        try:
            permitted = bool(self.predicate(state.principal))
        except Exception as exc:
            self.logger.error(
                "Gate predicate raised",
                principal_id=state.principal_id,
                fail_open=self.fail_open,
                error=str(exc),
            )
            if self.fail_open:
                return GateDecision(True, "predicate_error")
            return GateDecision(False, "predicate_error")

        if permitted:
            return GateDecision(True, "ok")
        if state.principal is None:
            return GateDecision(False, "no_principal")
        return GateDecision(False, "denied")
