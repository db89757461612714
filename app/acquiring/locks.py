"""
Row-level concurrency control for acquiring records.

Every versioned record (Transaction, CardSubmission, Withdrawal, Balance)
increments its ``version`` column on each save. Two helpers build on that:

1. **check_version** - optimistic check combined with a row lock. The caller
   states the version it last read; a mismatch raises StaleRecordError and
   the caller must re-read before retrying.

2. **lock_for_update** - plain ``SELECT ... FOR UPDATE`` used when the
   caller did not supply a version. The FSM source-state guard then protects
   against stale intent.

Usage:
    from acquiring.locks import check_version, lock_for_update

    with transaction.atomic():
        withdrawal = check_version(Withdrawal, withdrawal_id, expected_version=3)
        withdrawal.mark_paid()
        withdrawal.save()  # version becomes 4

Note:
    Both helpers must run inside ``transaction.atomic()``; the lock is held
    until the surrounding transaction commits or rolls back.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

from django.db import models, transaction

from acquiring.exceptions import AcquiringNotFoundError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

# Type variable for model classes
T = TypeVar("T", bound=models.Model)


def _not_found(model_class: type[models.Model], pk: Any) -> AcquiringNotFoundError:
    model_name = model_class.__name__
    return AcquiringNotFoundError(
        f"{model_name} {pk} not found",
        error_code=f"{model_name.upper()}_NOT_FOUND",
        details={"pk": str(pk)},
    )


def check_version(
    model_class: type[T],
    pk: Any,
    expected_version: int,
) -> T:
    """
    Atomically check version and lock a record for update.

    Args:
        model_class: Django model class (must have 'version' field)
        pk: Primary key of the record
        expected_version: Version the caller expects

    Returns:
        The locked model instance (within a transaction)

    Raises:
        StaleRecordError: If version doesn't match (concurrent modification)
        AcquiringNotFoundError: If record doesn't exist
    """
    with transaction.atomic():
        instance = (
            model_class.objects.select_for_update()
            .filter(pk=pk, version=expected_version)
            .first()
        )

        if instance is None:
            current = model_class.objects.filter(pk=pk).values("version").first()
            if current is None:
                raise _not_found(model_class, pk)

            model_name = model_class.__name__
            raise StaleRecordError(
                f"{model_name} {pk} has been modified "
                f"(expected version {expected_version}, current {current['version']})",
                details={
                    "pk": str(pk),
                    "expected_version": expected_version,
                    "current_version": current["version"],
                },
            )

        return instance


def lock_for_update(
    model_class: type[T],
    pk: Any,
    expected_version: int | None = None,
) -> T:
    """
    Lock a record for update, checking the version when one is given.

    Args:
        model_class: Django model class
        pk: Primary key of the record
        expected_version: Optional version the caller expects

    Returns:
        The locked model instance

    Raises:
        StaleRecordError: If expected_version is given and doesn't match
        AcquiringNotFoundError: If record doesn't exist
    """
    if expected_version is not None:
        return check_version(model_class, pk, expected_version)

    instance = model_class.objects.select_for_update().filter(pk=pk).first()
    if instance is None:
        raise _not_found(model_class, pk)
    return instance


__all__ = [
    "check_version",
    "lock_for_update",
]
