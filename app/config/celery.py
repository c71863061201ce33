"""
Celery configuration for the Django application.

Celery runs the background side of the chat:
- Applying unread increments for every stored message
- Recounting a participant's counter after a lost update
- Periodic drift repair (see CELERY_BEAT_SCHEDULE in settings)

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps.

Usage:
    from chat.tasks import recalculate_unread_count

    recalculate_unread_count.delay(chat_id, user_id)

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

# Create Celery application instance
app = Celery("config")

# Load configuration from Django settings
# All Celery settings should be prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Celery will look for a tasks.py module in each installed app
app.autodiscover_tasks()
