"""
In-memory session storage.

GOVERNANCE:
- No persistent storage (single-process deployments and tests)
- No external database connections
"""

import random
import string
import uuid
from datetime import datetime
from functools import lru_cache
from typing import Optional

from api.models.session import MTRSession, SessionStatus
from storage.gateway import SessionConflictError


class SessionNotFoundError(KeyError):
    """Raised when a session id is unknown to the store."""


def generate_review_number(now: Optional[datetime] = None) -> str:
    """Review number in the form MTR-YYYYMM-XXXXXX."""
    now = now or datetime.utcnow()
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"MTR-{now.year}{now.month:02d}-{suffix}"


class InMemorySessionGateway:
    """In-memory persistence gateway.

    Sessions are copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self):
        self._sessions: dict[str, MTRSession] = {}

    def _get(self, session_id: str) -> MTRSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    def _find_in_progress(self, patient_id: str) -> Optional[MTRSession]:
        for session in self._sessions.values():
            if (
                session.patient_id == patient_id
                and session.status == SessionStatus.IN_PROGRESS
            ):
                return session
        return None

    async def create(self, patient_id: str) -> MTRSession:
        """Store a new session and assign its id.

        Raises:
            SessionConflictError: the patient already has a session in progress
        """
        existing = self._find_in_progress(patient_id)
        if existing is not None:
            raise SessionConflictError(
                f"Patient {patient_id} already has session {existing.id} in progress",
                session_id=existing.id,
            )
        session = MTRSession(
            id=str(uuid.uuid4()),
            patient_id=patient_id,
            review_number=generate_review_number(),
        )
        self._sessions[session.id] = session
        return session.model_copy(deep=True)

    async def load(self, session_id: str) -> MTRSession:
        """Retrieve a session by ID."""
        return self._get(session_id).model_copy(deep=True)

    async def load_in_progress(self, patient_id: str) -> Optional[MTRSession]:
        """Retrieve the patient's in-progress session."""
        session = self._find_in_progress(patient_id)
        return session.model_copy(deep=True) if session is not None else None

    async def upsert(self, session: MTRSession) -> MTRSession:
        """Insert or replace a session."""
        if session.id is None:
            raise ValueError("Cannot upsert a session without an id")
        stored = session.model_copy(deep=True)
        stored.updated_at = datetime.utcnow()
        if stored.review_number is None and session.id in self._sessions:
            stored.review_number = self._sessions[session.id].review_number
        self._sessions[session.id] = stored
        return stored.model_copy(deep=True)

    async def complete(self, session_id: str) -> MTRSession:
        """Mark a stored session completed."""
        session = self._get(session_id)
        session.status = SessionStatus.COMPLETED
        session.completed_at = session.completed_at or datetime.utcnow()
        return session.model_copy(deep=True)

    async def cancel(self, session_id: str) -> None:
        """Mark a stored session cancelled."""
        self._get(session_id).status = SessionStatus.CANCELLED

    def list_all(self) -> list[MTRSession]:
        """List all sessions."""
        return [s.model_copy(deep=True) for s in self._sessions.values()]

    def count_by_status(self) -> dict[str, int]:
        """Count sessions by status."""
        counts = {status.value: 0 for status in SessionStatus}
        for session in self._sessions.values():
            counts[session.status.value] += 1
        return counts


@lru_cache
def get_storage() -> InMemorySessionGateway:
    """Get the singleton storage instance."""
    return InMemorySessionGateway()
