"""
Core Application - Infrastructure & Base Classes

Generic building blocks shared by the escrow and notifications apps.
Nothing in here knows about orders, holds, or payouts.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)
    - AppendOnlyModel: Abstract model for insert-only rows

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - VersionedMixin: Optimistic version counter

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError and its ValidationError, NotFoundError,
      PermissionDeniedError, ConflictError, PreconditionFailedError and
      ExternalServiceError subclasses

Resilience (import from core.circuit_breaker):
    - CircuitBreaker: Cache-backed breaker shared across instances
"""
