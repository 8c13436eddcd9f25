"""
Tests for the pure engine functions: derivation, resolution,
identifier normalisation, default seeding and the storage codecs.
"""

import json

import pytest
from datetime import datetime
from decimal import Decimal

from coinflow.engine.codec import (
    snapshot_from_blob,
    snapshot_from_rows,
    snapshot_to_blob,
    transaction_patch,
)
from coinflow.engine.derive import calculate_balance, latest_activity, recompute
from coinflow.engine.normalize import (
    UNCATEGORIZED,
    IdNormalizer,
    is_canonical_id,
    repair_references,
)
from coinflow.engine.resolver import find_by_name, resolve_by_name
from coinflow.engine.seeding import (
    DEFAULT_CATEGORY_NAMES,
    DEFAULT_PAYMENT_MODE_NAMES,
    seed_defaults,
)
from coinflow.errors import ValidationError
from coinflow.models.ledger import (
    Cashbook,
    Category,
    PaymentMode,
    Scope,
    Snapshot,
    Transaction,
    TransactionType,
)


D1 = datetime(2024, 3, 1, 9, 0)
D2 = datetime(2024, 3, 15, 18, 30)


def tx(cashbook_id: str, type: str, amount: str, date: datetime = D1, **extra) -> Transaction:
    return Transaction(
        cashbook_id=cashbook_id,
        type=TransactionType(type),
        amount=Decimal(amount),
        category_id=extra.pop("category_id", "cat"),
        mode_id=extra.pop("mode_id", "mode"),
        date=date,
        **extra,
    )


class TestDerive:
    """Tests for balance and last-activity derivation."""

    def test_balance_is_cash_in_minus_cash_out(self):
        txs = [
            tx("a", "CASH_IN", "4000.75"),
            tx("a", "CASH_OUT", "1200"),
            tx("b", "CASH_IN", "50"),
        ]
        assert calculate_balance("a", txs) == Decimal("2800.75")
        assert calculate_balance("b", txs) == Decimal("50")
        assert calculate_balance("none", txs) == Decimal("0")

    def test_latest_activity(self):
        txs = [tx("a", "CASH_IN", "1", date=D1), tx("a", "CASH_IN", "1", date=D2)]
        assert latest_activity("a", txs) == D2
        assert latest_activity("b", txs) is None

    def test_recompute_updates_cashbooks(self):
        book = Cashbook(name="Personal")
        snapshot = Snapshot(
            cashbooks=(book,),
            transactions=(
                tx(book.id, "CASH_IN", "4000.75", date=D1),
                tx(book.id, "CASH_OUT", "1200", date=D2),
            ),
        )
        result = recompute(snapshot).get_cashbook(book.id)
        assert result.balance == Decimal("2800.75")
        assert result.last_activity == D2

    def test_recompute_is_idempotent(self):
        book = Cashbook(name="Personal")
        snapshot = Snapshot(cashbooks=(book,), transactions=(tx(book.id, "CASH_IN", "5"),))
        once = recompute(snapshot)
        twice = recompute(once)
        assert twice == once
        assert twice is once

    def test_empty_cashbook_keeps_prior_activity(self):
        book = Cashbook(name="Personal", balance=Decimal("10"), last_activity=D1)
        result = recompute(Snapshot(cashbooks=(book,))).get_cashbook(book.id)
        assert result.balance == Decimal("0")
        assert result.last_activity == D1


class TestResolver:
    """Tests for find-or-create by name."""

    def test_creates_when_missing(self):
        result, records = resolve_by_name((), "Travel", Category)
        assert result.created
        assert result.name == "Travel"
        assert [r.id for r in records] == [result.id]

    def test_case_insensitive_and_non_duplicating(self):
        first, records = resolve_by_name((), "Cash", PaymentMode, kind="payment mode")
        second, records_again = resolve_by_name(records, "cash", PaymentMode, kind="payment mode")
        assert second.id == first.id
        assert second.name == "Cash"
        assert not second.created
        assert len(records_again) == len(records) == 1

    def test_trims_before_matching(self):
        existing = (Category(name="Rent"),)
        result, records = resolve_by_name(existing, "  RENT ", Category)
        assert result.id == existing[0].id
        assert records == existing

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            resolve_by_name((), "   ", Category)
        assert exc_info.value.field == "category"

    def test_input_is_not_modified(self):
        existing = [Category(name="Rent")]
        resolve_by_name(existing, "Food", Category)
        assert len(existing) == 1

    def test_find_by_name(self):
        records = (Category(name="Groceries"),)
        assert find_by_name(records, "groceries") is records[0]
        assert find_by_name(records, "rent") is None


class TestNormalize:
    """Tests for identifier remapping and reference repair."""

    def test_canonical_ids_are_kept(self):
        normalizer = IdNormalizer()
        value = "3F2504E0-4F89-11D3-9A0C-0305E82C3301"
        assert normalizer.canonical(value) == value.lower()
        assert normalizer.mapping == {}

    def test_same_source_maps_to_same_id(self):
        normalizer = IdNormalizer()
        first = normalizer.canonical("cb-1")
        assert is_canonical_id(first)
        assert normalizer.canonical("cb-1") == first
        assert normalizer.canonical("cb-2") != first

    def test_cross_references_remap_consistently(self):
        """A cashbook id and a transaction's cashbook_id get the same canonical id."""
        snapshot = Snapshot(
            cashbooks=(Cashbook(id="cb-1", name="Home"),),
            categories=(Category(id="cat-1", name="Food"),),
            payment_modes=(PaymentMode(id="m-1", name="Cash"),),
            transactions=(
                tx("cb-1", "CASH_OUT", "5", id="t-1", category_id="cat-1", mode_id="m-1"),
                tx("cb-1", "CASH_IN", "9", id="t-2", category_id="cat-1", mode_id="m-1"),
            ),
        )
        normalized, remapped = IdNormalizer().normalize(snapshot)

        cashbook = normalized.cashbooks[0]
        assert is_canonical_id(cashbook.id)
        assert remapped == 5
        for t in normalized.transactions:
            assert is_canonical_id(t.id)
            assert t.cashbook_id == cashbook.id
            assert t.category_id == normalized.categories[0].id
            assert t.mode_id == normalized.payment_modes[0].id

    def test_mapping_is_stable_across_calls(self):
        normalizer = IdNormalizer()
        snapshot = Snapshot(cashbooks=(Cashbook(id="cb-1", name="Home"),))
        first, _ = normalizer.normalize(snapshot)
        second, _ = normalizer.normalize(snapshot)
        assert first.cashbooks[0].id == second.cashbooks[0].id

    def test_repair_drops_orphans(self):
        book = Cashbook(name="Home")
        category = Category(name="Food")
        mode = PaymentMode(name="Cash")
        kept = tx(book.id, "CASH_IN", "1", category_id=category.id, mode_id=mode.id)
        orphan = tx("gone", "CASH_IN", "1", category_id=category.id, mode_id=mode.id)
        snapshot = Snapshot(
            cashbooks=(book,),
            categories=(category,),
            payment_modes=(mode,),
            transactions=(kept, orphan),
        )
        repaired, dropped = repair_references(snapshot)
        assert dropped == 1
        assert [t.id for t in repaired.transactions] == [kept.id]

    def test_repair_resolves_by_name(self):
        book = Cashbook(name="Home")
        food = Category(name="Food")
        cash = PaymentMode(name="Cash")
        legacy = tx(book.id, "CASH_OUT", "3", category_id="", category="food", mode_id="", mode="")
        snapshot = Snapshot(
            cashbooks=(book,),
            categories=(food,),
            payment_modes=(cash,),
            transactions=(legacy,),
        )
        repaired, _ = repair_references(snapshot)
        fixed = repaired.transactions[0]
        assert fixed.category_id == food.id
        assert fixed.category == "Food"
        # No stored mode name: an "Unspecified" mode is created
        assert fixed.mode == "Unspecified"
        assert len(repaired.payment_modes) == 2

    def test_repair_falls_back_to_uncategorized(self):
        book = Cashbook(name="Home")
        mode = PaymentMode(name="Cash")
        legacy = tx(book.id, "CASH_OUT", "3", category_id="", category="", mode_id=mode.id, mode="Cash")
        snapshot = Snapshot(cashbooks=(book,), payment_modes=(mode,), transactions=(legacy,))
        repaired, _ = repair_references(snapshot)
        assert repaired.transactions[0].category == UNCATEGORIZED
        assert [c.name for c in repaired.categories] == [UNCATEGORIZED]


class TestSeeding:
    """Tests for default categories and payment modes."""

    def test_seeds_empty_scope(self):
        seeded, categories, modes = seed_defaults(Snapshot())
        assert [c.name for c in seeded.categories] == list(DEFAULT_CATEGORY_NAMES)
        assert [m.name for m in seeded.payment_modes] == list(DEFAULT_PAYMENT_MODE_NAMES)
        assert len(categories) == 5
        assert len(modes) == 4

    def test_each_set_is_checked_on_its_own(self):
        snapshot = Snapshot(categories=(Category(name="Travel"),))
        seeded, categories, modes = seed_defaults(snapshot)
        assert [c.name for c in seeded.categories] == ["Travel"]
        assert categories == ()
        assert len(modes) == 4

    def test_nothing_to_seed_returns_same_snapshot(self):
        snapshot = Snapshot(
            categories=(Category(name="Travel"),),
            payment_modes=(PaymentMode(name="Cash"),),
        )
        seeded, categories, modes = seed_defaults(snapshot)
        assert seeded is snapshot
        assert categories == () and modes == ()


class TestCodec:
    """Tests for row and cache blob conversion."""

    def test_rows_to_snapshot_resolves_names(self):
        scope = Scope(user_id="u1")
        snapshot = snapshot_from_rows(
            scope,
            [{"id": "b1", "name": "Home", "currency": None, "owner_id": "u1"}],
            [{"id": "c1", "name": "Food", "owner_id": "u1"}],
            [{"id": "m1", "name": "Card", "owner_id": "u1"}],
            [
                {
                    "id": "t1",
                    "cashbook_id": "b1",
                    "type": "CASH_OUT",
                    "amount": "12.50",
                    "description": None,
                    "category_id": "c1",
                    "mode_id": "m1",
                    "transaction_datetime": "2024-03-01T10:00:00+00:00",
                    "recorded_by_user_id": "u1",
                }
            ],
            default_currency="EUR",
        )
        assert snapshot.cashbooks[0].currency == "EUR"
        t = snapshot.transactions[0]
        assert (t.category, t.mode, t.description) == ("Food", "Card", "")
        assert t.amount == Decimal("12.50")
        assert t.date == datetime(2024, 3, 1, 10, 0)

    def test_transaction_patch_maps_columns(self):
        patch = transaction_patch(
            {
                "amount": Decimal("7.25"),
                "type": TransactionType.CASH_OUT,
                "date": D1,
                "category": "Food",
                "category_id": "c1",
            }
        )
        assert patch == {
            "amount": "7.25",
            "type": "CASH_OUT",
            "transaction_datetime": D1.isoformat(),
            "category_id": "c1",
        }

    def test_blob_keeps_records_and_currency(self):
        book = Cashbook(name="Home", currency="KES")
        snapshot = Snapshot(
            cashbooks=(book,),
            transactions=(tx(book.id, "CASH_IN", "3.10"),),
            primary_currency="KES",
        )
        restored = snapshot_from_blob(snapshot_to_blob(snapshot), Scope(), "USD")
        assert restored.cashbooks[0].id == book.id
        assert restored.transactions[0].amount == Decimal("3.10")
        assert restored.primary_currency == "KES"

    def test_legacy_blob_keys(self):
        blob = json.dumps(
            {
                "cashbooks": [{"id": "cb-1", "name": "Home", "lastActivity": None}],
                "transactions": [
                    {
                        "id": "t-1",
                        "cashbookId": "cb-1",
                        "type": "CASH_IN",
                        "amount": 20,
                        "category": "Salary",
                        "mode": "Cash",
                        "date": "2024-01-02T03:04:05.000Z",
                    }
                ],
                "categories": [{"id": "cat-1", "name": "Salary"}],
                "paymentModes": [{"id": "m-1", "name": "Cash"}],
            }
        )
        snapshot = snapshot_from_blob(blob, Scope(), "GBP")
        assert snapshot.cashbooks[0].currency == "GBP"
        assert snapshot.transactions[0].cashbook_id == "cb-1"
        assert snapshot.transactions[0].category_id == ""
        assert snapshot.payment_modes[0].name == "Cash"
        assert snapshot.primary_currency == "USD"

    def test_corrupt_blob_raises_value_error(self):
        with pytest.raises(ValueError):
            snapshot_from_blob("{not json", Scope(), "USD")

    def test_legacy_amounts_are_rounded_to_cents(self):
        blob = json.dumps(
            {
                "cashbooks": [{"id": "cb-1", "name": "Home"}],
                "transactions": [
                    {
                        "id": "t-1",
                        "cashbookId": "cb-1",
                        "type": "CASH_OUT",
                        "amount": 12.345,
                        "category": "Food",
                        "mode": "Cash",
                        "date": "2024-01-02T00:00:00",
                    }
                ],
            }
        )
        snapshot = snapshot_from_blob(blob, Scope(), "USD")
        assert snapshot.transactions[0].amount == Decimal("12.35")

    def test_malformed_record_is_skipped_not_fatal(self):
        blob = json.dumps(
            {
                "cashbooks": [{"id": "cb-1", "name": "Home"}, {"id": "cb-2", "name": ""}],
                "transactions": [
                    {
                        "id": "t-1",
                        "cashbookId": "cb-1",
                        "type": "CASH_IN",
                        "amount": "abc",
                        "date": "2024-01-02T00:00:00",
                    }
                ],
                "categories": [{"id": "cat-1", "name": "Salary"}, {"id": "cat-2"}],
            }
        )
        snapshot = snapshot_from_blob(blob, Scope(), "USD")
        assert [c.id for c in snapshot.cashbooks] == ["cb-1"]
        assert snapshot.transactions == ()
        assert [c.name for c in snapshot.categories] == ["Salary"]
