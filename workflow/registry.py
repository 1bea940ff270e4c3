"""
Active review registry for the HTTP service.

One controller per review id, all sharing the storage gateway.
"""

from functools import lru_cache
from typing import Optional

from api.models.medication import PatientContext
from config import Settings, get_settings
from storage import get_storage
from storage.gateway import PersistenceGateway
from workflow.autosave import AutoSaver
from workflow.controller import ReviewController
from workflow.errors import PersistenceError


class ReviewRegistry:
    """Maps review ids to their controllers."""

    def __init__(self, gateway: PersistenceGateway, settings: Optional[Settings] = None):
        self.gateway = gateway
        self.settings = settings or get_settings()
        self._controllers: dict[str, ReviewController] = {}
        self.autosaver = AutoSaver(
            self.controllers, interval=self.settings.autosave_interval_seconds
        )

    def _new_controller(self) -> ReviewController:
        return ReviewController(self.gateway, self.settings)

    async def create(
        self, patient_id: str, patient: Optional[PatientContext] = None
    ) -> ReviewController:
        """Start a review and register its controller."""
        controller = self._new_controller()
        session = await controller.create_review(patient_id, patient)
        if session.id is None:
            raise PersistenceError("Gateway did not assign a review id")
        self._controllers[session.id] = controller
        return controller

    async def get(self, session_id: str) -> ReviewController:
        """Registered controller for a review, loading it if needed."""
        controller = self._controllers.get(session_id)
        if controller is not None:
            return controller
        controller = self._new_controller()
        await controller.load_review(session_id)
        return self._controllers.setdefault(session_id, controller)

    async def complete(self, session_id: str) -> ReviewController:
        """Complete a review and stop tracking its controller."""
        controller = await self.get(session_id)
        await controller.complete_review(id_hint=session_id)
        self.release(session_id)
        return controller

    async def cancel(self, session_id: str) -> ReviewController:
        """Cancel a review and stop tracking its controller."""
        controller = await self.get(session_id)
        await controller.cancel_review()
        self.release(session_id)
        return controller

    def release(self, session_id: str) -> None:
        """Forget a closed review; a later get() reloads it from storage."""
        self._controllers.pop(session_id, None)

    def controllers(self) -> list[ReviewController]:
        return list(self._controllers.values())


@lru_cache
def get_registry() -> ReviewRegistry:
    """Get the singleton registry."""
    return ReviewRegistry(get_storage(), get_settings())
