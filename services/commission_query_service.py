"""
Commission queries for admin dashboards.

Summaries can be scoped to one partner organization, which is how a
partner's own dashboard shows what it is owed and what it has been paid.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from domain.commission import CommissionLedger, LedgerStatus
from domain.organization import Organization
from repositories import commission_ledger_repository as ledger_repository
from repositories import organization_repository
from repositories.commission_ledger_repository import LedgerQueryFilters

MAX_PAGE_SIZE: int = 100


class OrganizationNotFoundError(Exception):
    """Raised when a summary is requested for an unknown organization."""


@dataclass(frozen=True, slots=True)
class LedgerPage:
    ledgers: List[CommissionLedger]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def page_amount(self) -> Decimal:
        """Sum of final amounts on this page."""
        return sum((ledger.final_amount for ledger in self.ledgers), Decimal("0"))


@dataclass(frozen=True, slots=True)
class StatusTotals:
    count: int = 0
    amount: Decimal = Decimal("0")


@dataclass(frozen=True, slots=True)
class CommissionSummary:
    """
    Counts and amounts per ledger status.

    total_pending_amount covers pending and processed ledgers (owed but not
    yet paid). Disputed ledgers are counted per status but left out of
    total_amount until the dispute is resolved.
    """
    by_status: Dict[LedgerStatus, StatusTotals] = field(default_factory=dict)

    def totals(self, status: LedgerStatus) -> StatusTotals:
        return self.by_status.get(status, StatusTotals())

    @property
    def total_pending_amount(self) -> Decimal:
        return self.totals(LedgerStatus.PENDING).amount + self.totals(LedgerStatus.PROCESSED).amount

    @property
    def total_paid_amount(self) -> Decimal:
        return self.totals(LedgerStatus.PAID).amount

    @property
    def total_amount(self) -> Decimal:
        return self.total_pending_amount + self.total_paid_amount


@dataclass(frozen=True, slots=True)
class OrganizationCommissionSummary:
    organization: Organization
    summary: CommissionSummary


def list_commission_ledgers(
    status: Optional[LedgerStatus] = None,
    organization_id: Optional[UUID] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 20,
) -> LedgerPage:
    """List ledgers matching the filters, newest period first."""

    if page < 1:
        raise ValueError("page must be at least 1")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

    filters = LedgerQueryFilters(
        status=status,
        organization_id=organization_id,
        start_date=start_date,
        end_date=end_date,
    )
    ledgers, total = ledger_repository.list_ledgers(filters, page=page, limit=limit)
    return LedgerPage(ledgers=ledgers, page=page, limit=limit, total=total)


def get_commission_ledger(ledger_id: UUID) -> Optional[CommissionLedger]:
    return ledger_repository.get_ledger_by_id(ledger_id)


def get_commission_summary(organization_id: Optional[UUID] = None) -> CommissionSummary:
    """Totals across all ledgers, or only `organization_id`'s when given."""

    counts: Dict[LedgerStatus, int] = {status: 0 for status in LedgerStatus}
    amounts: Dict[LedgerStatus, Decimal] = {status: Decimal("0") for status in LedgerStatus}

    for status, amount in ledger_repository.list_status_amounts(organization_id):
        counts[status] += 1
        amounts[status] += amount

    return CommissionSummary(
        by_status={
            status: StatusTotals(count=counts[status], amount=amounts[status])
            for status in LedgerStatus
        }
    )


def get_organization_commission_summary(organization_id: UUID) -> OrganizationCommissionSummary:
    """
    Commission totals for one partner organization.

    Raises:
        OrganizationNotFoundError: If the organization does not exist
    """

    organization = organization_repository.get_organization_by_id(organization_id)
    if organization is None:
        raise OrganizationNotFoundError(f"Organization {organization_id} not found")

    return OrganizationCommissionSummary(
        organization=organization,
        summary=get_commission_summary(organization_id),
    )


__all__ = [
    "CommissionSummary",
    "LedgerPage",
    "OrganizationCommissionSummary",
    "OrganizationNotFoundError",
    "StatusTotals",
    "get_commission_ledger",
    "get_commission_summary",
    "get_organization_commission_summary",
    "list_commission_ledgers",
]
