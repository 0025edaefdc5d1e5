"""Report Engine - API Routers"""
from .extractions import router as extractions_router
from .reports import router as reports_router
from .rounds import router as rounds_router

__all__ = [
    "extractions_router",
    "reports_router",
    "rounds_router",
]
