from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


class MeetingProviderError(Exception):
    pass


@dataclass(frozen=True)
class MeetingRequest:
    topic: str
    start_at: datetime
    duration_minutes: int
    timezone: str


@dataclass(frozen=True)
class MeetingRef:
    provider: str
    meeting_id: str
    join_url: str | None = None
    password: str | None = None


class MeetingProvider(ABC):
    name: str = "unknown"

    @abstractmethod
    async def probe(self) -> bool:
        """Cheap connectivity check run before every create."""

    @abstractmethod
    async def create_meeting(self, request: MeetingRequest) -> MeetingRef: ...

    @abstractmethod
    async def update_meeting(
        self,
        meeting_id: str,
        *,
        start_at: datetime,
        duration_minutes: int,
        timezone: str,
    ) -> None: ...

    @abstractmethod
    async def delete_meeting(self, meeting_id: str) -> None:
        """Delete a meeting; an already missing meeting counts as deleted."""

    async def aclose(self) -> None:
        return None


class DisabledMeetingProvider(MeetingProvider):
    name = "disabled"

    async def probe(self) -> bool:
        return False

    async def create_meeting(self, request: MeetingRequest) -> MeetingRef:
        raise MeetingProviderError("Meeting provider is disabled")

    async def update_meeting(self, meeting_id: str, *, start_at: datetime, duration_minutes: int, timezone: str) -> None:
        raise MeetingProviderError("Meeting provider is disabled")

    async def delete_meeting(self, meeting_id: str) -> None:
        raise MeetingProviderError("Meeting provider is disabled")
