"""
Pytest configuration for the Django apps.

This module configures pytest-django and provides project-wide fixtures.
App-specific fixtures are defined in each app's tests/conftest.py.
"""

import os

import django
import pytest

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

IN_MEMORY_CHANNEL_LAYERS = {
    "default": {"BACKEND": "channels.layers.InMemoryChannelLayer"},
}


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()

    from django.conf import settings

    # Use fast password hasher for tests (PBKDF2 is too slow with 870K iterations)
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]

    # Realtime events stay in-process; no Redis needed
    settings.CHANNEL_LAYERS = IN_MEMORY_CHANNEL_LAYERS


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_consumers.py → e2e (full websocket journeys)
    - test_store.py, test_session.py, test_inbox.py, etc. → integration
    - test_models.py, test_serializers.py, test_helpers.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    # Filename patterns for each category
    e2e_patterns = ["test_consumers.py"]

    integration_patterns = [
        "test_store.py",
        "test_directory.py",
        "test_unread.py",
        "test_session.py",
        "test_inbox.py",
        "test_realtime.py",
        "test_tasks.py",
        "test_signals.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_managers.py",
        "test_helpers.py",
        "test_types.py",
        "test_exceptions.py",
    ]

    for item in items:
        # Skip if test already has unit/integration/e2e marker
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filepath = str(item.fspath)
        filename = filepath.split("/")[-1]

        # Check patterns in priority order
        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            # Default: integration (safe for Django where most tests hit DB)
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def in_memory_channel_layer(settings):
    """
    Give every test a fresh in-memory channel layer.

    Overriding CHANNEL_LAYERS resets Channels' cached backends, so groups
    and queued events never leak between tests.
    """
    settings.CHANNEL_LAYERS = IN_MEMORY_CHANNEL_LAYERS
    return settings.CHANNEL_LAYERS
