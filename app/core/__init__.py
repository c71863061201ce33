"""
Core Application - Infrastructure & Base Classes

Generic, reusable base classes shared by the domain apps. No chat logic
lives here.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Services (import from core.services):
    - BaseService: Base class for service layer (per-class logger)

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ValidationError: Input validation failures
    - PermissionDeniedError: Authorization failures
    - ConflictError: State conflicts (duplicates, etc.)
    - ExternalServiceError: Backing service failures

Note:
    Models are NOT imported here to avoid AppRegistryNotReady errors.
    Import them directly from core.models.
"""

# Exceptions (no Django dependencies)
from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    PermissionDeniedError,
    ValidationError,
)

__all__ = [
    # Exceptions
    "BaseApplicationError",
    "ValidationError",
    "PermissionDeniedError",
    "ConflictError",
    "ExternalServiceError",
]
