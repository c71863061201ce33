# =============================================================================
# Django Project Configuration Package
# =============================================================================
# Settings, URLs, the ASGI application and the Celery app that runs the
# unread counter tasks.
#
# The Celery app is imported here so it is loaded whenever Django starts
# and @shared_task functions in chat.tasks bind to it.
# =============================================================================

from config.celery import app as celery_app

__all__ = ("celery_app",)
