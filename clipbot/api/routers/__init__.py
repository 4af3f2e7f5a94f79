from .health import router as health_router
from .jobs import router as jobs_router
from .webhook import router as webhook_router

__all__ = ["health_router", "jobs_router", "webhook_router"]
