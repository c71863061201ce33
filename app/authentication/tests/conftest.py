"""
Test configuration and fixtures for authentication tests.

This module provides:
- A basic active user
- A staff user

Usage:
    def test_example(user):
        assert user.is_active
"""

import pytest

from authentication.models import User
from authentication.tests.factories import UserFactory


@pytest.fixture
def user(db):
    """Create a basic active user."""
    return UserFactory(username="alice", email="alice@example.com")


@pytest.fixture
def staff_user(db):
    """Create a staff user able to reach the admin."""
    return User.objects.create_superuser(
        email="staff@example.com",
        username="staffer",
        password="StaffPass123!",
    )
