"""
Organization repository.

Read-only lookups of partner organizations and their student memberships.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping, Optional
from uuid import UUID

from domain.organization import (
    COMMISSIONABLE_MEMBERSHIP_STATUSES,
    MembershipStatus,
    Organization,
    OrganizationMembership,
)
from repositories.client import get_supabase

_ORGANIZATIONS_TABLE: str = "organizations"
_MEMBERS_TABLE: str = "organization_members"


def _row_to_membership(row: Mapping[str, Any]) -> OrganizationMembership:
    return OrganizationMembership(
        organization_id=UUID(str(row["organization_id"])),
        buyer_id=UUID(str(row["buyer_id"])),
        status=MembershipStatus(str(row["status"])),
        member_name=str(row.get("name") or ""),
    )


def get_commissionable_membership(buyer_id: UUID) -> Optional[OrganizationMembership]:
    """
    Find the membership through which a buyer's purchases earn commission.

    Only active or registered memberships qualify. If a buyer somehow holds
    several, the earliest one wins so the choice is stable across calls.

    Returns:
        OrganizationMembership or None if the buyer is not a commissionable member
    """

    response = (
        get_supabase().table(_MEMBERS_TABLE)
        .select("organization_id, buyer_id, name, status")
        .eq("buyer_id", str(buyer_id))
        .in_("status", sorted(s.value for s in COMMISSIONABLE_MEMBERSHIP_STATUSES))
        .order("created_at_utc")
        .limit(1)
        .execute()
    )
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to fetch organization membership: {error}")

    rows = getattr(response, "data", None) or []
    if not rows:
        return None
    return _row_to_membership(rows[0])


def get_organization_by_id(organization_id: UUID) -> Optional[Organization]:
    """
    Get an organization by its ID.

    Returns:
        Organization or None if not found
    """

    response = (
        get_supabase().table(_ORGANIZATIONS_TABLE)
        .select("organization_id, name, commission_rate, minimum_guarantee")
        .eq("organization_id", str(organization_id))
        .limit(1)
        .execute()
    )
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to fetch organization: {error}")

    rows = getattr(response, "data", None) or []
    if not rows:
        return None

    row = rows[0]
    return Organization(
        organization_id=UUID(str(row["organization_id"])),
        name=str(row.get("name") or ""),
        commission_rate_percent=Decimal(str(row.get("commission_rate") or "0")),
        minimum_guarantee=Decimal(str(row.get("minimum_guarantee") or "0")),
    )


__all__ = ["get_commissionable_membership", "get_organization_by_id"]
