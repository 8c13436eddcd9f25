"""
Tests for CashbookContext mutations on an anonymous (local-only) scope.

Remote propagation is covered in test_sync.py.
"""

import pytest
from datetime import datetime
from decimal import Decimal

from coinflow.engine.context import CashbookContext
from coinflow.errors import NotFoundError, ValidationError
from coinflow.models.audit import AuditEventType
from coinflow.models.ledger import CashbookUpdate, TransactionInput, TransactionType

from tests.helpers import tx_data


D1 = datetime(2024, 1, 5, 9, 0)
D2 = datetime(2024, 1, 20, 17, 45)


class TestLifecycle:
    """End-to-end scenarios on a fresh scope."""

    def test_basic_lifecycle(self, context):
        """Salary in, rent out: balance and last activity follow."""
        book = context.create_cashbook("Personal")
        context.add_transaction(
            book.id,
            tx_data("CASH_IN", "4000.75", "Salary", "Bank Transfer", description="Salary", date=D1),
        )
        context.add_transaction(
            book.id,
            tx_data("CASH_OUT", "1200", "Rent", "Bank Transfer", description="Rent", date=D2),
        )

        cashbook = context.get_cashbook(book.id)
        assert cashbook.balance == Decimal("2800.75")
        assert cashbook.last_activity == D2

    def test_new_cashbook_is_empty(self, context):
        book = context.create_cashbook("Business", currency="NGN")
        assert book.balance == Decimal("0")
        assert book.last_activity is None
        assert book.currency == "NGN"
        assert context.snapshot.cashbooks == (book,)

    def test_new_cashbook_uses_primary_currency(self, context):
        context.set_primary_currency("eur")
        assert context.create_cashbook("Travel").currency == "EUR"

    def test_transaction_input_model_is_accepted(self, context):
        book = context.create_cashbook("Personal")
        data = TransactionInput(
            type=TransactionType.CASH_OUT,
            amount=Decimal("15.00"),
            category="Groceries",
            mode="Card",
        )
        created = context.add_transaction(book.id, data)
        assert context.transactions_for(book.id) == [created]


class TestCashbookOperations:
    """Tests for create / update / delete cashbook."""

    def test_empty_name_rejected(self, context):
        before = context.snapshot
        with pytest.raises(ValidationError):
            context.create_cashbook("   ")
        assert context.snapshot is before

    def test_duplicate_name_rejected(self, context):
        context.create_cashbook("Personal")
        with pytest.raises(ValidationError) as exc_info:
            context.create_cashbook(" Personal ")
        assert exc_info.value.field == "name"
        assert len(context.snapshot.cashbooks) == 1

    def test_rename_cascades_nothing(self, context):
        book = context.create_cashbook("Personal")
        t = context.add_transaction(book.id, tx_data(date=D1))
        before = context.get_cashbook(book.id)

        result = context.update_cashbook(book.id, {"name": "Household"})

        after = result.unwrap()
        assert after.name == "Household"
        assert after.balance == before.balance
        assert after.last_activity == before.last_activity
        assert context.snapshot.get_transaction(t.id).cashbook_id == book.id

    def test_update_ignores_unknown_fields(self, context):
        book = context.create_cashbook("Personal")
        before = context.snapshot
        result = context.update_cashbook(book.id, {"colour": "red"})
        assert result.ok
        assert not result.changed
        assert context.snapshot is before

    def test_update_with_same_values_is_no_op(self, context):
        book = context.create_cashbook("Personal", currency="USD")
        result = context.update_cashbook(book.id, CashbookUpdate(name="Personal", currency="USD"))
        assert not result.changed

    def test_update_to_taken_name_rejected(self, context):
        context.create_cashbook("Personal")
        other = context.create_cashbook("Business")
        with pytest.raises(ValidationError):
            context.update_cashbook(other.id, {"name": "Personal"})

    def test_update_missing_cashbook(self, context, audit_logger):
        result = context.update_cashbook("missing", {"name": "X"})
        assert not result.ok
        assert result.missing_id == "missing"
        with pytest.raises(NotFoundError):
            result.unwrap()
        assert audit_logger.history[-1].event_type == AuditEventType.RECORD_NOT_FOUND

    def test_delete_cascades_to_transactions(self, context):
        """Deleting a cashbook removes exactly its transactions."""
        personal = context.create_cashbook("Personal")
        business = context.create_cashbook("Business")
        for amount in ("10", "20", "30"):
            context.add_transaction(personal.id, tx_data(amount=amount))
        context.add_transaction(business.id, tx_data(amount="99"))
        business_before = context.get_cashbook(business.id)

        result = context.delete_cashbook(personal.id)

        assert result.unwrap().id == personal.id
        assert context.get_cashbook(personal.id) is None
        assert [t.cashbook_id for t in context.snapshot.transactions] == [business.id]
        assert context.get_cashbook(business.id) == business_before

    def test_delete_missing_cashbook(self, context):
        assert not context.delete_cashbook("missing").ok


class TestTransactionOperations:
    """Tests for add / update / delete transaction."""

    def test_non_positive_amount_rejected(self, context):
        book = context.create_cashbook("Personal")
        before = context.snapshot
        with pytest.raises(ValidationError) as exc_info:
            context.add_transaction(book.id, tx_data(amount="0"))
        assert exc_info.value.field == "amount"
        assert context.snapshot is before

    def test_unknown_cashbook_rejected(self, context):
        with pytest.raises(ValidationError) as exc_info:
            context.add_transaction("missing", tx_data())
        assert exc_info.value.field == "cashbook_id"

    def test_blank_category_rejected(self, context):
        book = context.create_cashbook("Personal")
        with pytest.raises(ValidationError):
            context.add_transaction(book.id, tx_data(category="  "))

    def test_names_resolve_to_existing_records(self, context):
        """Seeded 'Cash' is reused for 'cash'; no duplicate mode appears."""
        book = context.create_cashbook("Personal")
        modes_before = len(context.snapshot.payment_modes)

        created = context.add_transaction(book.id, tx_data(mode="cash", category="groceries"))

        assert created.mode == "Cash"
        assert created.category == "Groceries"
        assert len(context.snapshot.payment_modes) == modes_before

    def test_unknown_names_create_records(self, context):
        book = context.create_cashbook("Personal")
        created = context.add_transaction(book.id, tx_data(category="Travel", mode="Voucher"))
        category_names = [c.name for c in context.snapshot.categories]
        mode_names = [m.name for m in context.snapshot.payment_modes]
        assert "Travel" in category_names
        assert "Voucher" in mode_names
        assert created.category_id == next(
            c.id for c in context.snapshot.categories if c.name == "Travel"
        )

    def test_update_amount_and_type(self, context):
        book = context.create_cashbook("Personal")
        t = context.add_transaction(book.id, tx_data("CASH_IN", "100"))

        result = context.update_transaction(t.id, {"amount": "40", "type": "CASH_OUT"})

        assert result.changed
        assert context.get_cashbook(book.id).balance == Decimal("-40")

    def test_move_between_cashbooks_recomputes_both(self, context):
        personal = context.create_cashbook("Personal")
        business = context.create_cashbook("Business")
        t = context.add_transaction(personal.id, tx_data("CASH_IN", "75", date=D1))

        context.update_transaction(t.id, {"cashbook_id": business.id})

        assert context.get_cashbook(personal.id).balance == Decimal("0")
        # The emptied cashbook keeps its last activity
        assert context.get_cashbook(personal.id).last_activity == D1
        assert context.get_cashbook(business.id).balance == Decimal("75")
        assert context.get_cashbook(business.id).last_activity == D1

    def test_move_to_unknown_cashbook_rejected(self, context):
        book = context.create_cashbook("Personal")
        t = context.add_transaction(book.id, tx_data())
        with pytest.raises(ValidationError):
            context.update_transaction(t.id, {"cashbook_id": "missing"})

    def test_update_category_by_name(self, context):
        book = context.create_cashbook("Personal")
        t = context.add_transaction(book.id, tx_data(category="Salary"))
        updated = context.update_transaction(t.id, {"category": "consulting"}).unwrap()
        assert updated.category == "Consulting"

    def test_update_blank_category_fails_whole_update(self, context):
        book = context.create_cashbook("Personal")
        t = context.add_transaction(book.id, tx_data(amount="10"))
        with pytest.raises(ValidationError):
            context.update_transaction(t.id, {"amount": "20", "category": " "})
        assert context.snapshot.get_transaction(t.id).amount == Decimal("10")

    def test_update_without_changes(self, context):
        book = context.create_cashbook("Personal")
        t = context.add_transaction(book.id, tx_data(amount="10"))
        result = context.update_transaction(t.id, {"amount": "10.00"})
        assert result.ok
        assert not result.changed

    def test_update_missing_transaction(self, context):
        assert not context.update_transaction("missing", {"amount": "1"}).ok

    def test_delete_transaction(self, context):
        book = context.create_cashbook("Personal")
        keep = context.add_transaction(book.id, tx_data("CASH_IN", "10"))
        drop = context.add_transaction(book.id, tx_data("CASH_IN", "5"))

        assert context.delete_transaction(drop.id).unwrap().id == drop.id
        assert context.get_cashbook(book.id).balance == Decimal("10")
        assert [t.id for t in context.snapshot.transactions] == [keep.id]
        assert not context.delete_transaction(drop.id).ok

    def test_balance_invariant_after_mixed_operations(self, context):
        a = context.create_cashbook("A")
        b = context.create_cashbook("B")
        t1 = context.add_transaction(a.id, tx_data("CASH_IN", "100"))
        t2 = context.add_transaction(a.id, tx_data("CASH_OUT", "30.50"))
        context.add_transaction(b.id, tx_data("CASH_IN", "12"))
        context.update_transaction(t1.id, {"amount": "80"})
        context.update_transaction(t2.id, {"cashbook_id": b.id})
        context.add_transaction(a.id, tx_data("CASH_OUT", "5"))

        for cashbook in context.snapshot.cashbooks:
            expected = sum(
                (t.signed_amount for t in context.snapshot.transactions if t.cashbook_id == cashbook.id),
                Decimal("0"),
            )
            assert cashbook.balance == expected
        assert context.get_cashbook(a.id).balance == Decimal("75")
        assert context.get_cashbook(b.id).balance == Decimal("-18.50")


class TestCategoryAndModeOperations:
    """Tests for add / remove category and payment mode."""

    def test_add_category_is_idempotent(self, context):
        first = context.add_category("Travel")
        second = context.add_category("  travel ")
        assert first.created
        assert not second.created
        assert second.id == first.id
        assert [c.name for c in context.snapshot.categories].count("Travel") == 1

    def test_add_existing_payment_mode(self, context):
        before = context.snapshot
        result = context.add_payment_mode("CARD")
        assert not result.created
        assert result.name == "Card"
        assert context.snapshot is before

    def test_add_blank_name_rejected(self, context):
        with pytest.raises(ValidationError):
            context.add_payment_mode("")

    def test_remove_category_cascades(self, context):
        """Removing a category deletes its transactions and recomputes their cashbooks."""
        a = context.create_cashbook("A")
        b = context.create_cashbook("B")
        context.add_transaction(a.id, tx_data("CASH_IN", "50", category="Rent"))
        context.add_transaction(a.id, tx_data("CASH_IN", "20", category="Salary"))
        context.add_transaction(b.id, tx_data("CASH_OUT", "5", category="Rent"))
        rent = next(c for c in context.snapshot.categories if c.name == "Rent")

        result = context.remove_category(rent.id)

        assert result.unwrap().name == "Rent"
        assert all(t.category_id != rent.id for t in context.snapshot.transactions)
        assert len(context.snapshot.transactions) == 1
        assert context.get_cashbook(a.id).balance == Decimal("20")
        assert context.get_cashbook(b.id).balance == Decimal("0")
        assert "Rent" not in [c.name for c in context.snapshot.categories]

    def test_remove_payment_mode_cascades(self, context):
        book = context.create_cashbook("Personal")
        context.add_transaction(book.id, tx_data("CASH_IN", "8", mode="Card"))
        context.add_transaction(book.id, tx_data("CASH_IN", "2", mode="Cash"))
        card = next(m for m in context.snapshot.payment_modes if m.name == "Card")

        context.remove_payment_mode(card.id)

        assert [t.mode for t in context.snapshot.transactions] == ["Cash"]
        assert context.get_cashbook(book.id).balance == Decimal("2")

    def test_remove_missing_records(self, context):
        assert not context.remove_category("missing").ok
        assert context.remove_payment_mode("missing").missing_id == "missing"


class TestPublication:
    """Tests for snapshot subscribers."""

    def test_subscribers_receive_each_snapshot(self, context):
        received = []
        unsubscribe = context.subscribe(received.append)
        book = context.create_cashbook("Personal")
        context.add_transaction(book.id, tx_data())
        unsubscribe()
        context.create_cashbook("Later")

        assert len(received) == 2
        assert received[-1] is not received[0]
        assert received[-1].get_cashbook(book.id).balance == Decimal("100.00")

    def test_failing_subscriber_does_not_stop_others(self, context, audit_logger):
        received = []

        def broken(snapshot):
            raise RuntimeError("subscriber bug")

        context.subscribe(broken)
        context.subscribe(received.append)
        context.create_cashbook("Personal")

        assert len(received) == 1
        assert any(
            e.event_type == AuditEventType.SUBSCRIBER_FAILED for e in audit_logger.history
        )

    def test_published_snapshot_is_cached(self, context, cache):
        context.create_cashbook("Personal")
        assert "Personal" in cache.get(context.scope.key)

    def test_mutations_are_audited(self, context, audit_logger):
        book = context.create_cashbook("Personal")
        context.delete_cashbook(book.id)
        types = [e.event_type for e in audit_logger.history]
        assert AuditEventType.CASHBOOK_CREATED in types
        assert AuditEventType.CASHBOOK_DELETED in types


class TestPrimaryCurrency:

    def test_blank_currency_rejected(self, context):
        with pytest.raises(ValidationError):
            context.set_primary_currency(" ")

    def test_same_currency_is_no_op(self, context):
        before = context.snapshot
        assert context.set_primary_currency("usd") is before


def test_context_without_load_is_anonymous_and_empty():
    ctx = CashbookContext()
    assert not ctx.scope.is_authenticated
    assert ctx.snapshot.cashbooks == ()
    assert ctx.pending_failures == []
