"""
FastAPI route modules for the chaos controller.
"""

from chaos_controller.api.chaos_routes import router as chaos_router
from chaos_controller.api.diagnostics_routes import router as diagnostics_router

__all__ = ["chaos_router", "diagnostics_router"]
