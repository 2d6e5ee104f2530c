"""
Pytest configuration.

Adds the project root to the Python path so tests can import domain,
repositories, services and api, and provides an in-memory stand-in for the
Supabase-backed repositories.

The stand-in honours the same conditional-write contracts as the real
repositories (open-ledger uniqueness on insert, revision+status check on
update, one claim per purchase, capture only if not already captured),
guarded by a lock so that threaded tests exercise real races.
"""

import sys
import threading
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple
from uuid import UUID, uuid4

import pytest

# Add the project root to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config.settings import get_settings  # noqa: E402
from domain.commission import CommissionLedger, LedgerStatus  # noqa: E402
from domain.organization import (  # noqa: E402
    MembershipStatus,
    Organization,
    OrganizationMembership,
)
from domain.period import CommissionPeriod  # noqa: E402
from domain.purchase import Purchase, PurchaseStatus  # noqa: E402
from repositories import (  # noqa: E402
    audit_log_repository,
    commission_ledger_repository,
    organization_repository,
    purchase_repository,
    student_repository,
)
from repositories.commission_ledger_repository import (  # noqa: E402
    LedgerQueryFilters,
    LedgerWriteConflict,
    PurchaseClaim,
    open_key_for,
)


def utc(year: int, month: int, day: int, hour: int = 12, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


class InMemoryBackend:
    """Thread-safe in-memory replacement for the Supabase repositories."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.ledgers: Dict[UUID, CommissionLedger] = {}
        self.purchases: Dict[UUID, Purchase] = {}
        self.memberships: Dict[UUID, OrganizationMembership] = {}
        self.organizations: Dict[UUID, Organization] = {}
        self.discounts: Dict[UUID, Decimal] = {}
        self.grants: Set[Tuple[UUID, UUID]] = set()
        self.audit_events: List[dict] = []
        self.claims: Dict[UUID, PurchaseClaim] = {}

    # -- fixtures helpers ------------------------------------------------

    def add_organization(self, rate: str = "10", minimum_guarantee: str = "0",
                         name: str = "Bright Coaching") -> Organization:
        org = Organization(
            organization_id=uuid4(),
            name=name,
            commission_rate_percent=Decimal(rate),
            minimum_guarantee=Decimal(minimum_guarantee),
        )
        self.organizations[org.organization_id] = org
        return org

    def add_member(self, organization: Organization, status: MembershipStatus = MembershipStatus.ACTIVE,
                   name: str = "Asha Rao") -> UUID:
        buyer_id = uuid4()
        self.memberships[buyer_id] = OrganizationMembership(
            organization_id=organization.organization_id,
            buyer_id=buyer_id,
            status=status,
            member_name=name,
        )
        return buyer_id

    def add_purchase(
        self,
        buyer_id: UUID,
        amount: str,
        captured_at: Optional[datetime] = None,
        status: PurchaseStatus = PurchaseStatus.CAPTURED,
        final_price: Optional[str] = None,
        payment_id: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> Purchase:
        created = captured_at or utc(2025, 3, 10)
        purchase = Purchase(
            purchase_id=uuid4(),
            buyer_id=buyer_id,
            package_id=uuid4(),
            amount=Decimal(amount),
            status=status,
            created_at=created,
            package_name="JEE Mock Test Series",
            buyer_name="Asha Rao",
            gateway_order_id=order_id or f"order_{uuid4().hex[:14]}",
            gateway_payment_id=payment_id,
            captured_at=captured_at if status is PurchaseStatus.CAPTURED else None,
        )
        self.purchases[purchase.purchase_id] = purchase
        if final_price is not None:
            self.discounts[purchase.purchase_id] = Decimal(final_price)
        return purchase

    def ledgers_for(self, organization_id: UUID) -> List[CommissionLedger]:
        return sorted(
            (l for l in self.ledgers.values() if l.organization_id == organization_id),
            key=lambda l: l.calculated_at,
        )

    # -- commission_ledger_repository -----------------------------------

    def get_ledger_by_id(self, ledger_id: UUID) -> Optional[CommissionLedger]:
        with self._lock:
            return self.ledgers.get(ledger_id)

    def find_ledger_containing_purchase(self, purchase_id: UUID) -> Optional[CommissionLedger]:
        with self._lock:
            for ledger in self.ledgers.values():
                if ledger.contains_purchase(purchase_id):
                    return ledger
            return None

    def find_open_ledger(self, organization_id: UUID, period: CommissionPeriod) -> Optional[CommissionLedger]:
        with self._lock:
            for ledger in self.ledgers.values():
                if (
                    ledger.organization_id == organization_id
                    and ledger.period == period
                    and ledger.is_open
                ):
                    return ledger
            return None

    def _open_key_taken(self, ledger: CommissionLedger) -> bool:
        key = open_key_for(ledger)
        if key is None:
            return False
        return any(
            open_key_for(other) == key
            for other in self.ledgers.values()
            if other.ledger_id != ledger.ledger_id
        )

    def insert_ledger(self, ledger: CommissionLedger) -> CommissionLedger:
        with self._lock:
            if self._open_key_taken(ledger):
                raise LedgerWriteConflict("open ledger exists")
            self.ledgers[ledger.ledger_id] = ledger
            return ledger

    def compare_and_swap_ledger(self, current: CommissionLedger,
                                updated: CommissionLedger) -> Optional[CommissionLedger]:
        with self._lock:
            stored = self.ledgers.get(current.ledger_id)
            if stored is None or stored.revision != current.revision or stored.status != current.status:
                return None
            persisted = replace(updated, revision=current.revision + 1)
            if self._open_key_taken(persisted):
                raise LedgerWriteConflict("open ledger exists")
            self.ledgers[persisted.ledger_id] = persisted
            return persisted

    def list_ledgers(self, filters: LedgerQueryFilters, page: int = 1,
                     limit: int = 20) -> Tuple[List[CommissionLedger], int]:
        with self._lock:
            matches = [
                l for l in self.ledgers.values()
                if (filters.status is None or l.status == filters.status)
                and (filters.organization_id is None or l.organization_id == filters.organization_id)
                and (filters.start_date is None or l.period.start >= filters.start_date)
                and (filters.end_date is None or l.period.start <= filters.end_date)
            ]
        matches.sort(key=lambda l: l.period.start, reverse=True)
        offset = (page - 1) * limit
        return matches[offset:offset + limit], len(matches)

    def list_status_amounts(self, organization_id: Optional[UUID] = None) -> List[Tuple[LedgerStatus, Decimal]]:
        with self._lock:
            return [
                (l.status, l.final_amount) for l in self.ledgers.values()
                if organization_id is None or l.organization_id == organization_id
            ]

    def claim_purchase(self, purchase_id: UUID, claimed_at: datetime) -> bool:
        with self._lock:
            if purchase_id in self.claims:
                return False
            self.claims[purchase_id] = PurchaseClaim(purchase_id, None, claimed_at)
            return True

    def get_claim(self, purchase_id: UUID) -> Optional[PurchaseClaim]:
        with self._lock:
            return self.claims.get(purchase_id)

    def assign_claim(self, purchase_id: UUID, ledger_id: UUID) -> None:
        with self._lock:
            claim = self.claims.get(purchase_id)
            if claim is not None:
                self.claims[purchase_id] = replace(claim, ledger_id=ledger_id)

    def take_over_stale_claim(self, purchase_id: UUID, stale_before: datetime,
                              claimed_at: datetime) -> bool:
        with self._lock:
            claim = self.claims.get(purchase_id)
            if claim is None or claim.ledger_id is not None or claim.claimed_at >= stale_before:
                return False
            self.claims[purchase_id] = replace(claim, claimed_at=claimed_at)
            return True

    def release_claim(self, purchase_id: UUID) -> None:
        with self._lock:
            claim = self.claims.get(purchase_id)
            if claim is not None and claim.ledger_id is None:
                del self.claims[purchase_id]

    # -- purchase_repository --------------------------------------------

    def get_purchase_by_id(self, purchase_id: UUID) -> Optional[Purchase]:
        with self._lock:
            return self.purchases.get(purchase_id)

    def get_purchase_by_gateway_payment_id(self, payment_id: str) -> Optional[Purchase]:
        with self._lock:
            return next((p for p in self.purchases.values() if p.gateway_payment_id == payment_id), None)

    def get_purchase_by_gateway_order_id(self, order_id: str) -> Optional[Purchase]:
        with self._lock:
            return next((p for p in self.purchases.values() if p.gateway_order_id == order_id), None)

    def mark_purchase_captured(self, purchase_id: UUID, captured_at: datetime,
                               gateway_payment_id: Optional[str] = None,
                               gateway_signature: Optional[str] = None) -> bool:
        with self._lock:
            purchase = self.purchases.get(purchase_id)
            if purchase is None or purchase.is_captured:
                return False
            self.purchases[purchase_id] = replace(
                purchase,
                status=PurchaseStatus.CAPTURED,
                captured_at=captured_at,
                gateway_payment_id=gateway_payment_id or purchase.gateway_payment_id,
                failure_reason=None,
            )
            return True

    def mark_purchase_failed(self, purchase_id: UUID, failure_reason: str) -> bool:
        with self._lock:
            purchase = self.purchases.get(purchase_id)
            if purchase is None or purchase.status in (PurchaseStatus.FAILED, PurchaseStatus.CAPTURED):
                return False
            self.purchases[purchase_id] = replace(
                purchase, status=PurchaseStatus.FAILED, failure_reason=failure_reason
            )
            return True

    def mark_purchase_authorized(self, purchase_id: UUID) -> bool:
        with self._lock:
            purchase = self.purchases.get(purchase_id)
            if purchase is None or purchase.status is not PurchaseStatus.CREATED:
                return False
            self.purchases[purchase_id] = replace(purchase, status=PurchaseStatus.AUTHORIZED)
            return True

    def get_discounted_final_price(self, purchase_id: UUID) -> Optional[Decimal]:
        return self.discounts.get(purchase_id)

    def list_captured_purchases(self, start: datetime, end: datetime) -> List[Purchase]:
        with self._lock:
            return [
                p for p in self.purchases.values()
                if p.is_captured and p.captured_at is not None and start <= p.captured_at <= end
            ]

    # -- organization_repository ----------------------------------------

    def get_commissionable_membership(self, buyer_id: UUID) -> Optional[OrganizationMembership]:
        membership = self.memberships.get(buyer_id)
        if membership is None or not membership.generates_commission():
            return None
        return membership

    def get_organization_by_id(self, organization_id: UUID) -> Optional[Organization]:
        return self.organizations.get(organization_id)

    # -- student_repository / audit_log_repository ----------------------

    def grant_package_access(self, student_id: UUID, package_id: UUID, granted_at: datetime) -> None:
        with self._lock:
            self.grants.add((student_id, package_id))

    def record_audit_event(self, action: str, performed_by: UUID, target_entity: str,
                           target_id: UUID, occurred_at: datetime,
                           organization_id: Optional[UUID] = None,
                           details: Optional[dict] = None) -> UUID:
        with self._lock:
            self.audit_events.append({
                "action": action,
                "performed_by": performed_by,
                "target_entity": target_entity,
                "target_id": target_id,
                "organization_id": organization_id,
                "details": dict(details or {}),
            })
        return uuid4()


_PATCHED = {
    commission_ledger_repository: (
        "get_ledger_by_id",
        "find_ledger_containing_purchase",
        "find_open_ledger",
        "insert_ledger",
        "compare_and_swap_ledger",
        "list_ledgers",
        "list_status_amounts",
        "claim_purchase",
        "get_claim",
        "assign_claim",
        "take_over_stale_claim",
        "release_claim",
    ),
    purchase_repository: (
        "get_purchase_by_id",
        "get_purchase_by_gateway_payment_id",
        "get_purchase_by_gateway_order_id",
        "mark_purchase_captured",
        "mark_purchase_failed",
        "mark_purchase_authorized",
        "get_discounted_final_price",
        "list_captured_purchases",
    ),
    organization_repository: ("get_commissionable_membership", "get_organization_by_id"),
    student_repository: ("grant_package_access",),
    audit_log_repository: ("record_audit_event",),
}


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    """Deterministic settings: monthly periods, no retry sleeps, test secrets."""

    monkeypatch.setenv("COMMISSION_PERIOD_TYPE", "monthly")
    monkeypatch.setenv("COMMISSION_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("COMMISSION_RETRY_BACKOFF_SECONDS", "0")
    monkeypatch.setenv("RAZORPAY_WEBHOOK_SECRET", "test-webhook-secret")
    monkeypatch.setenv("RAZORPAY_KEY_SECRET", "test-key-secret")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def backend(monkeypatch) -> InMemoryBackend:
    """In-memory backend wired into every repository module."""

    store = InMemoryBackend()
    for module, names in _PATCHED.items():
        for name in names:
            monkeypatch.setattr(module, name, getattr(store, name))
    return store
