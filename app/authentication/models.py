"""
Authentication models.

This module defines the user model that every chat participant is:
- User: Email-based account carrying the public username and avatar

Related files:
    - managers.py: Custom user manager for email-based creation
    - chat.identity: Resolves the current user for chat services

Security:
    - User passwords hashed with Django's configured hasher
"""

import re

from django.contrib.auth.models import AbstractBaseUser
from django.core.exceptions import ValidationError
from django.db import models

from authentication.managers import UserManager


# Reserved usernames that cannot be used
RESERVED_USERNAMES = frozenset([
    "admin", "administrator", "root", "system", "api", "www",
    "mail", "email", "support", "help", "info", "contact",
    "about", "terms", "privacy", "security", "account", "login",
    "logout", "register", "signup", "signin", "signout", "auth",
    "user", "users", "profile", "profiles", "settings", "config",
    "null", "undefined", "anonymous", "guest", "staff", "mod",
    "moderator", "bot", "robot", "service", "notification", "you",
])


def validate_username_not_reserved(value):
    """Validate that username is not in the reserved list."""
    if value.lower() in RESERVED_USERNAMES:
        raise ValidationError(
            f"The username '{value}' is reserved and cannot be used."
        )


def validate_username_format(value):
    """Validate username format: 3-30 chars, alphanumeric + _ + -."""
    if not re.match(r"^[a-zA-Z0-9_-]{3,30}$", value):
        raise ValidationError(
            "Username must be 3-30 characters and contain only "
            "letters, numbers, underscores, and hyphens."
        )


class User(AbstractBaseUser):
    """
    Custom User model using email as the login identifier.

    The chat core only reads users: it shows the other participant's
    username and avatar in the inbox and lists candidates for new chats.

    Fields:
        email: Login identifier, unique
        username: Public handle shown in chats (unique)
        avatar_url: Optional URL of the user's avatar image
        is_active: Whether the user account is active
        is_staff: Whether the user can access Django admin
        date_joined: When the user account was created
        updated_at: When the user record was last modified
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (login identifier)",
    )

    username = models.CharField(
        max_length=30,
        unique=True,
        validators=[validate_username_format, validate_username_not_reserved],
        help_text="Unique username (3-30 chars, alphanumeric + _ + -)",
    )

    avatar_url = models.URLField(
        blank=True,
        default="",
        help_text="URL of the user's avatar image (empty when not set)",
    )

    # Account status flags
    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    # Timestamps
    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = ["username"]

    objects = UserManager()

    class Meta:
        db_table = "auth_user_account"
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["username"]

    def __str__(self):
        """Return the username as string representation."""
        return self.username

    def get_full_name(self):
        return self.username

    def get_short_name(self):
        return self.username
