"""API routes."""

from api.routes.assessment import router as assessment_router
from api.routes.ledger import router as ledger_router
from api.routes.reviews import router as reviews_router

__all__ = ["reviews_router", "assessment_router", "ledger_router"]
