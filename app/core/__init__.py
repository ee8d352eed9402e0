"""
Core Application - Infrastructure & Base Classes

Generic building blocks shared by the domain apps. No settlement logic
lives here.

Models (import from core.models):
    - BaseModel: Abstract model with created_at / updated_at

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin, VersionedMixin, MetadataMixin

Services (import from core.services):
    - BaseService, ServiceResult

Exceptions (import from core.exceptions):
    - BaseApplicationError and its ValidationError, ConflictError subclasses

Note:
    Models and model mixins are NOT imported here to avoid
    AppRegistryNotReady errors. Import them from their modules.
"""

from .services import BaseService, ServiceResult

from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ValidationError,
)

__all__ = [
    # Services
    "BaseService",
    "ServiceResult",
    # Exceptions
    "BaseApplicationError",
    "ValidationError",
    "ConflictError",
]
