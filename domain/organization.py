"""
Domain: Partner organizations and their student memberships.

Organizations earn a revenue share on purchases made by their members.
Membership is read-only from the commission ledger's point of view.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID


class MembershipStatus(str, Enum):
    INVITED = "invited"
    REGISTERED = "registered"
    ACTIVE = "active"
    REMOVED = "removed"


COMMISSIONABLE_MEMBERSHIP_STATUSES: frozenset[MembershipStatus] = frozenset(
    {MembershipStatus.ACTIVE, MembershipStatus.REGISTERED}
)


@dataclass(frozen=True, slots=True)
class OrganizationMembership:
    """Links a buyer (student) to the organization that referred them."""

    organization_id: UUID
    buyer_id: UUID
    status: MembershipStatus
    member_name: str = ""

    def generates_commission(self) -> bool:
        return self.status in COMMISSIONABLE_MEMBERSHIP_STATUSES


@dataclass(frozen=True, slots=True)
class Organization:
    """
    Partner organization.

    commission_rate_percent: share of each member purchase, 0-100
    minimum_guarantee: floor for a ledger's final amount (0 = none)
    """

    organization_id: UUID
    name: str
    commission_rate_percent: Decimal
    minimum_guarantee: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        if not Decimal("0") <= self.commission_rate_percent <= Decimal("100"):
            raise ValueError("commission_rate_percent must be between 0 and 100")
        if self.minimum_guarantee < 0:
            raise ValueError("minimum_guarantee must not be negative")
