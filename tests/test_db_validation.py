"""
Database validation tests.

This module tests the Supabase connection and verifies that:
1. Connection credentials work
2. Required tables exist
3. The commission ledger repository round-trips a ledger
4. Conditional writes (open-ledger uniqueness, revision check) are enforced
   by the database

Skipped unless SUPABASE_URL and SUPABASE_KEY are set. Run this first against
a fresh project after applying sql/schema.sql.
"""

from __future__ import annotations

import os
import sys
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

import pytest
from dotenv import load_dotenv

# Load .env file before anything else
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

# Add parent directory to path to import repositories
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

pytestmark = pytest.mark.skipif(
    not (os.getenv("SUPABASE_URL") and os.getenv("SUPABASE_KEY")),
    reason="SUPABASE_URL / SUPABASE_KEY not set",
)

REQUIRED_TABLES = (
    "commission_ledgers",
    "commission_claims",
    "audit_logs",
    "student_packages",
    "purchases",
    "organizations",
    "organization_members",
    "discount_applications",
)


def _test_ledger(organization_id=None):
    from domain.commission import CommissionLedger, CommissionLineItem
    from domain.period import PeriodType, period_containing

    purchased_at = datetime(2001, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
    item = CommissionLineItem(
        purchase_id=uuid4(),
        buyer_id=uuid4(),
        amount=Decimal("1000.00"),
        commission_amount=Decimal("100.00"),
        purchase_date=purchased_at,
        buyer_name="db-validation",
        package_name="db-validation",
    )
    return CommissionLedger.open_for(
        organization_id=organization_id or uuid4(),
        period=period_containing(purchased_at, PeriodType.MONTHLY),
        commission_rate_percent=Decimal("10"),
        first_item=item,
        calculated_at=purchased_at,
    )


def _delete_ledgers(*ledgers) -> None:
    from repositories.client import get_supabase

    for ledger in ledgers:
        get_supabase().table("commission_ledgers").delete().eq("ledger_id", str(ledger.ledger_id)).execute()


def test_environment_variables_set() -> None:
    """Verify required environment variables are set."""

    supabase_url = os.getenv("SUPABASE_URL")

    assert supabase_url.startswith("https://"), "SUPABASE_URL should start with https://"

    print(f"\n[OK] Environment variables set")
    print(f"  SUPABASE_URL: {supabase_url[:30]}...")


def test_supabase_client_initialization() -> None:
    """Test that Supabase client can be initialized."""

    from repositories.client import get_supabase

    try:
        assert get_supabase() is not None
        print("\n[OK] Supabase client initialized successfully")
    except RuntimeError as e:
        pytest.fail(f"Failed to initialize Supabase client: {e}")


@pytest.mark.parametrize("table", REQUIRED_TABLES)
def test_required_table_exists(table: str) -> None:
    """Verify each table the service reads or writes can be queried."""

    from repositories.client import get_supabase

    try:
        get_supabase().table(table).select("*").limit(0).execute()
        print(f"\n[OK] '{table}' table exists")
    except Exception as e:
        pytest.fail(
            f"'{table}' table does not exist or cannot be accessed: {e}\n"
            f"Apply sql/schema.sql (or create the table owned by the checkout service)."
        )


def test_commission_ledger_repository_round_trip() -> None:
    """Insert, read back, find by purchase, and conditionally update a ledger."""

    from repositories import commission_ledger_repository

    ledger = _test_ledger()
    purchase_id = ledger.line_items[0].purchase_id

    try:
        commission_ledger_repository.insert_ledger(ledger)

        stored = commission_ledger_repository.get_ledger_by_id(ledger.ledger_id)
        assert stored is not None, "Failed to retrieve inserted ledger"
        assert stored.final_amount == Decimal("100.00")
        assert stored.line_items[0].purchase_id == purchase_id

        found = commission_ledger_repository.find_ledger_containing_purchase(purchase_id)
        assert found is not None and found.ledger_id == ledger.ledger_id

        open_ledger = commission_ledger_repository.find_open_ledger(ledger.organization_id, ledger.period)
        assert open_ledger is not None and open_ledger.ledger_id == ledger.ledger_id

        updated = commission_ledger_repository.compare_and_swap_ledger(
            stored, replace(stored, notes="db-validation")
        )
        assert updated is not None and updated.revision == stored.revision + 1

        # The same (stale) revision must no longer match.
        stale = commission_ledger_repository.compare_and_swap_ledger(
            stored, replace(stored, notes="stale write")
        )
        assert stale is None
        print(f"\n[OK] Ledger round trip and conditional update work")
    finally:
        _delete_ledgers(ledger)


def test_second_open_ledger_for_same_period_is_rejected() -> None:
    """The partial unique index must reject two open ledgers for one organization and period."""

    from repositories import commission_ledger_repository
    from repositories.commission_ledger_repository import LedgerWriteConflict

    first = _test_ledger()
    second = _test_ledger(organization_id=first.organization_id)

    try:
        commission_ledger_repository.insert_ledger(first)
        with pytest.raises(LedgerWriteConflict):
            commission_ledger_repository.insert_ledger(second)
        print(f"\n[OK] Open-ledger uniqueness enforced")
    finally:
        _delete_ledgers(first, second)


def test_audit_log_insert() -> None:
    from repositories import audit_log_repository
    from repositories.client import get_supabase

    audit_id = audit_log_repository.record_audit_event(
        action="DB_VALIDATION",
        performed_by=uuid4(),
        target_entity="CommissionLedger",
        target_id=uuid4(),
        occurred_at=datetime.now(timezone.utc),
        details={"amount": Decimal("1.00")},
    )
    try:
        assert audit_id is not None
    finally:
        get_supabase().table("audit_logs").delete().eq("audit_id", str(audit_id)).execute()


def test_second_claim_for_same_purchase_is_rejected() -> None:
    """The claim primary key must reject a second claim for one purchase."""

    from repositories import commission_ledger_repository
    from repositories.client import get_supabase

    purchase_id = uuid4()
    claimed_at = datetime.now(timezone.utc)

    try:
        assert commission_ledger_repository.claim_purchase(purchase_id, claimed_at) is True
        assert commission_ledger_repository.claim_purchase(purchase_id, claimed_at) is False

        claim = commission_ledger_repository.get_claim(purchase_id)
        assert claim is not None and claim.ledger_id is None

        commission_ledger_repository.release_claim(purchase_id)
        assert commission_ledger_repository.get_claim(purchase_id) is None
        print(f"\n[OK] Purchase claim uniqueness enforced")
    finally:
        get_supabase().table("commission_claims").delete().eq("purchase_id", str(purchase_id)).execute()
