"""
URL configuration for the Django application.

HTTP only serves infrastructure; chat traffic goes through the websocket
routes in chat/routing.py (see config/asgi.py).

URL Structure:
    /health/    - Health check endpoint (for load balancers, Docker)
"""

from django.urls import path

from core.views import health_check

urlpatterns = [
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
]
