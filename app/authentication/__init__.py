"""
Authentication application.

Key components:
    - User model: Email-based account with public username and avatar

Usage:
    from authentication.models import User
"""
