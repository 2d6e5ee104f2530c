"""
Student package access (persistence).

Granting access is idempotent: the (student_id, package_id) pair is unique,
so a webhook and the checkout callback may both grant the same package.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from domain.time import to_iso_utc
from repositories.client import get_supabase

_STUDENT_PACKAGES_TABLE: str = "student_packages"


def grant_package_access(student_id: UUID, package_id: UUID, granted_at: datetime) -> None:
    """Give a student access to a purchased package (no-op if already granted)."""

    payload = {
        "student_id": str(student_id),
        "package_id": str(package_id),
        "granted_at_utc": to_iso_utc(granted_at, name="granted_at"),
    }
    response = (
        get_supabase().table(_STUDENT_PACKAGES_TABLE)
        .upsert(payload, on_conflict="student_id,package_id", ignore_duplicates=True)
        .execute()
    )
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to grant package access: {error}")


__all__ = ["grant_package_access"]
