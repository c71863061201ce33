"""
Tests for authentication app.

This package contains test modules for:
- test_models.py: User model validation and constraints
- test_managers.py: UserManager creation helpers

Usage:
    pytest authentication/tests/
"""
