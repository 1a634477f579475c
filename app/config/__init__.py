# =============================================================================
# Django Project Configuration Package
# =============================================================================
# Import the Celery app so it is loaded when Django starts and
# shared_task decorators bind to it.
# =============================================================================

from config.celery import app as celery_app

__all__ = ("celery_app",)
