"""
Core base models providing common functionality for all domain models.

Base Classes:
    BaseModel: Abstract model with timestamps (created_at, updated_at)
    AppendOnlyModel: Abstract model whose rows can be inserted but never
        updated or deleted (ledger entries, audit rows)

For mixins (UUIDPrimaryKeyMixin, VersionedMixin), see core.model_mixins.

Usage:
    from core.models import AppendOnlyModel, BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin

    class Order(UUIDPrimaryKeyMixin, BaseModel):
        amount_cents = models.PositiveBigIntegerField()

    class OrderTransition(UUIDPrimaryKeyMixin, AppendOnlyModel):
        to_status = models.CharField(max_length=20)

Note:
    Always list mixins before the base class in inheritance.
"""

from __future__ import annotations

from django.db import models

from core.exceptions import ConflictError


class ImmutableRecordError(ConflictError):
    """Raised when code tries to update or delete an append-only row."""

    default_error_code = "IMMUTABLE_RECORD"


class BaseModel(models.Model):
    """
    Abstract base model providing common fields for all models.

    Fields:
        created_at: Automatically set when the object is first created
        updated_at: Automatically updated whenever the object is saved
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this record was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when this record was last modified",
    )

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(id={self.pk})"


class AppendOnlyModel(models.Model):
    """
    Abstract base for rows that are written once and never changed.

    Corrections are new rows (e.g. a compensating ledger entry), never an
    UPDATE of an existing one. save() on a persisted instance and delete()
    both raise ImmutableRecordError. QuerySet.update()/delete() bypass this
    guard, so services must not call them on these tables.
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this record was written",
    )

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableRecordError(
                f"{self.__class__.__name__} rows are append-only",
                details={"id": str(self.pk)},
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableRecordError(
            f"{self.__class__.__name__} rows cannot be deleted",
            details={"id": str(self.pk)},
        )
