"""
Persistence gateway contract.

The workflow calls the gateway; the gateway never calls back. Any exception
raised by an implementation is treated as a transport failure, except
SessionConflictError and KeyError lookups.
"""

from typing import Optional, Protocol

from api.models.session import MTRSession


class SessionConflictError(Exception):
    """The patient already has an in-progress session in the store."""

    def __init__(self, message: str, session_id: str):
        super().__init__(message)
        self.session_id = session_id


class PersistenceGateway(Protocol):
    """Asynchronous save/load of review sessions."""

    async def create(self, patient_id: str) -> MTRSession:
        """
        Create a session record and assign its durable id.

        The in-progress check and the insert are one step: raises
        SessionConflictError if the patient already has an in-progress session.
        """
        ...

    async def load(self, session_id: str) -> MTRSession:
        ...

    async def load_in_progress(self, patient_id: str) -> Optional[MTRSession]:
        """Return the patient's in-progress session, if any."""
        ...

    async def upsert(self, session: MTRSession) -> MTRSession:
        ...

    async def complete(self, session_id: str) -> MTRSession:
        ...

    async def cancel(self, session_id: str) -> None:
        ...
