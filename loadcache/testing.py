"""
Test helpers and factories for exercising the loadcache engine.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from shared.errors import TransientError

from .models import Principal, ReadinessState


@dataclass
class TestUser:
    """Test user data."""
    __test__ = False

    principal_id: str
    email: str
    role: str

    def principal(self) -> Principal:
        return Principal(principal_id=self.principal_id, role=self.role, email=self.email)


class TestDataFactory:
    """Factory for creating test data."""

    __test__ = False

    @staticmethod
    def create_test_users() -> List[TestUser]:
        return [
            TestUser(principal_id="user-admin", email="admin@example.com", role="Admin"),
            TestUser(principal_id="user-collab", email="collab@example.com", role="Collaborator"),
            TestUser(principal_id="user-student", email="student@example.com", role="Student"),
        ]

    @staticmethod
    def create_test_modules() -> List[dict]:
        return [
            {"id": "mod-1", "title": "Foundations", "order": 1},
            {"id": "mod-2", "title": "Practice", "order": 2},
        ]


def ready_state(principal_id: str = "user-admin", role: str = "Admin") -> ReadinessState:
    """A settled, authenticated readiness state."""
    return ReadinessState(
        initialized=True,
        settling=False,
        principal=Principal(principal_id=principal_id, role=role),
    )


def signed_out_state() -> ReadinessState:
    return ReadinessState(initialized=True, settling=False, principal=None)


class FakeClock:
    """Manually advanced monotonic clock."""

    __test__ = False

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep stand-in that records requested delays and yields once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class CountingLoader:
    """Async loader returning ``value``; optionally blocks until released."""

    def __init__(self, value: Any = None, gated: bool = False):
        self.value = value
        self.calls = 0
        self.release = asyncio.Event()
        if not gated:
            self.release.set()

    async def __call__(self) -> Any:
        self.calls += 1
        await self.release.wait()
        return self.value


@dataclass
class ScriptedLoader:
    """Raises or returns each scripted outcome in turn; repeats the last one."""

    outcomes: Sequence[Any]
    calls: int = 0
    seen: List[int] = field(default_factory=list)

    async def __call__(self) -> Any:
        index = min(self.calls, len(self.outcomes) - 1)
        self.calls += 1
        self.seen.append(index)
        outcome = self.outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def transient(message: str = "backend unavailable", cause: Optional[BaseException] = None) -> TransientError:
    return TransientError(message, cause=cause)
