"""
Checkout tests

A checkout either records a COMPLETED transaction and empties the cart, or
fails leaving cart, ledger and wallet untouched. Stock release and the order
notification run after the transaction is recorded and never undo it.
"""
import pytest
from structlog.testing import capture_logs

from checkout import build_transaction, parse_payment_method
from errors import BusinessRuleError, PaymentFailedError, ValidationError
from schemas import ItemCreate, PaymentMethod, TransactionStatus

from tests.conftest import FakeNotifier, FakeWallet

USER = "user123"


class TestPaymentMethod:
    @pytest.mark.parametrize("value", ["CASH", "cash", " upi ", "Credit_Card"])
    def test_accepted(self, value):
        assert parse_payment_method(value) in set(PaymentMethod)

    @pytest.mark.parametrize("value", ["BITCOIN", "", None])
    def test_rejected(self, value):
        with pytest.raises(ValidationError) as exc:
            parse_payment_method(value)

        assert exc.value.code == "INVALID_PAYMENT_METHOD"


class TestCheckout:
    def test_successful_checkout(self, carts, engine, catalog, items, notifier):
        """Cart lines become transaction items; stock drops by paid and free units."""
        # Arrange
        offer_id = items["orange_offer"].id
        apple_id = items["apple"].id
        carts.add(USER, offer_id, 6)
        carts.add(USER, apple_id, 2)

        # Act
        transaction = engine.checkout(USER, "upi", notes="leave at door", notifier=notifier)

        # Assert
        assert transaction.id
        assert transaction.status == TransactionStatus.COMPLETED.value
        assert transaction.payment_method == PaymentMethod.UPI.value
        assert transaction.notes == "leave at door"
        assert transaction.total_amount == 140
        assert transaction.discount_amount == 60
        assert transaction.final_amount == 80

        by_id = {entry.item_id: entry for entry in transaction.items}
        assert (by_id[offer_id].paid_quantity, by_id[offer_id].free_quantity) == (3, 3)
        assert by_id[offer_id].subtotal == 60
        assert by_id[apple_id].subtotal == 20

        assert catalog.lookup(offer_id).stock_quantity == 94
        assert catalog.lookup(apple_id).stock_quantity == 98
        assert notifier.sent == [(transaction.id, 80)]
        assert carts.get(USER).lines == []

    def test_transaction_persisted(self, carts, engine, ledger, items):
        # Arrange
        carts.add(USER, items["apple"].id, 1)

        # Act
        transaction = engine.checkout(USER, "CASH")

        # Assert
        assert ledger.get(USER, transaction.id).final_amount == 10
        assert [t.id for t in ledger.history(USER)] == [transaction.id]

    def test_empty_cart(self, engine, ledger):
        with pytest.raises(BusinessRuleError) as exc:
            engine.checkout(USER, "CASH")

        assert exc.value.code == "EMPTY_CART"
        assert ledger.history(USER) == []

    def test_invalid_payment_method_keeps_cart(self, carts, engine, ledger, items):
        # Arrange
        carts.add(USER, items["apple"].id, 2)

        # Act
        with pytest.raises(ValidationError) as exc:
            engine.checkout(USER, "BARTER")

        # Assert
        assert exc.value.code == "INVALID_PAYMENT_METHOD"
        assert carts.get(USER).total_items == 2
        assert ledger.history(USER) == []

    def test_item_selling_out(self, purchase, catalog, items):
        # Act
        purchase(USER, items["scarce"].id, quantity=2)

        # Assert
        item = catalog.lookup(items["scarce"].id)
        assert item.stock_quantity == 0
        assert item.in_stock is False

    def test_transaction_unaffected_by_later_cart_changes(self, carts, engine, ledger, items):
        # Arrange
        carts.add(USER, items["apple"].id, 2)
        transaction = engine.checkout(USER, "CASH")

        # Act
        carts.add(USER, items["apple"].id, 7)

        # Assert
        stored = ledger.get(USER, transaction.id)
        assert stored.items[0].paid_quantity == 2
        assert stored.final_amount == 20


class TestWalletPayment:
    def test_sufficient_balance(self, carts, engine, items):
        # Arrange
        wallet = FakeWallet(balance=100)
        carts.add(USER, items["apple_offer"].id, 4)

        # Act
        transaction = engine.checkout(USER, "WALLET", wallet=wallet)

        # Assert
        assert wallet.deductions == [(USER, 20)]
        assert wallet.balance == 80
        assert transaction.payment_method == PaymentMethod.WALLET.value

    def test_insufficient_balance(self, carts, engine, ledger, items):
        """Nothing is charged, recorded or cleared when the balance is short."""
        # Arrange
        wallet = FakeWallet(balance=5)
        carts.add(USER, items["apple"].id, 1)

        # Act
        with pytest.raises(BusinessRuleError) as exc:
            engine.checkout(USER, "WALLET", wallet=wallet)

        # Assert
        assert exc.value.code == "INSUFFICIENT_BALANCE"
        assert wallet.deductions == []
        assert ledger.history(USER) == []
        assert carts.get(USER).total_items == 1

    def test_exact_balance(self, carts, engine, items):
        wallet = FakeWallet(balance=10)
        carts.add(USER, items["apple"].id, 1)

        engine.checkout(USER, "WALLET", wallet=wallet)

        assert wallet.balance == 0

    @pytest.mark.parametrize("fail_on", ["get_balance", "deduct"])
    def test_wallet_service_failure(self, carts, engine, ledger, items, fail_on):
        # Arrange
        wallet = FakeWallet(fail_on=fail_on)
        carts.add(USER, items["apple"].id, 1)

        # Act
        with pytest.raises(PaymentFailedError) as exc:
            engine.checkout(USER, "WALLET", wallet=wallet)

        # Assert
        assert exc.value.code == "PAYMENT_FAILED"
        assert exc.value.status_code == 502
        assert ledger.history(USER) == []
        assert carts.get(USER).total_items == 1

    def test_wallet_not_configured(self, carts, engine, items):
        carts.add(USER, items["apple"].id, 1)

        with pytest.raises(PaymentFailedError):
            engine.checkout(USER, "WALLET")

    def test_other_methods_skip_wallet(self, carts, engine, items):
        wallet = FakeWallet(balance=0)
        carts.add(USER, items["apple"].id, 1)

        engine.checkout(USER, "CASH", wallet=wallet)

        assert wallet.deductions == []


class TestBestEffortSteps:
    def test_notifier_failure_keeps_transaction(self, carts, engine, ledger, items):
        # Arrange
        carts.add(USER, items["apple"].id, 1)

        # Act
        transaction = engine.checkout(USER, "CASH", notifier=FakeNotifier(fail=True))

        # Assert
        assert ledger.get(USER, transaction.id).status == TransactionStatus.COMPLETED.value
        assert carts.get(USER).lines == []

    def test_stock_failure_keeps_transaction(self, carts, engine, catalog, ledger, items, monkeypatch):
        # Arrange
        carts.add(USER, items["apple"].id, 1)
        carts.add(USER, items["orange"].id, 1)

        def broken(item_id, delta):
            raise RuntimeError("stock service down")

        monkeypatch.setattr(catalog, "adjust_stock", broken)

        # Act
        transaction = engine.checkout(USER, "CASH")

        # Assert
        assert ledger.get(USER, transaction.id).final_amount == 30
        assert carts.get(USER).lines == []

    def test_deleted_item_does_not_block_checkout(self, carts, engine, catalog, items):
        # Arrange
        carts.add(USER, items["apple"].id, 1)
        catalog.delete(items["apple"].id)

        # Act
        transaction = engine.checkout(USER, "CASH")

        # Assert
        assert transaction.status == TransactionStatus.COMPLETED.value


def test_build_transaction_prices_paid_units_only(carts, items):
    # Arrange
    carts.add(USER, items["mango_offer"].id, 9)
    cart = carts.get(USER)

    # Act
    transaction = build_transaction(cart, PaymentMethod.CASH)

    # Assert
    entry = transaction.items[0]
    assert (entry.paid_quantity, entry.free_quantity) == (4, 5)
    assert entry.subtotal == 120
    assert transaction.final_amount == cart.final_price == 120
    assert transaction.id is None


@pytest.mark.parametrize("unit_price, expected", [(1.005, 1.01), (0.125, 0.13), (0.1, 0.3)])
def test_subtotal_rounds_like_cart_totals(carts, catalog, unit_price, expected):
    """Subtotals use the same half-up cent rounding as the cart's final price."""
    # Arrange
    item = catalog.create(ItemCreate(name="Loose fruit", unit_price=unit_price, stock_quantity=10))
    carts.add(USER, item.id, 3 if unit_price == 0.1 else 1)
    cart = carts.get(USER)

    # Act
    transaction = build_transaction(cart, PaymentMethod.CASH)

    # Assert
    assert transaction.items[0].subtotal == expected
    assert transaction.items[0].subtotal == cart.final_price == transaction.final_amount


def test_wallet_charge_without_transaction_is_logged(carts, engine, ledger, items, monkeypatch):
    # Arrange
    wallet = FakeWallet(balance=100)
    carts.add(USER, items["apple"].id, 1)

    def broken(transaction):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(ledger, "record", broken)

    # Act
    with capture_logs() as logs, pytest.raises(RuntimeError):
        engine.checkout(USER, "WALLET", wallet=wallet)

    # Assert
    charged = [entry for entry in logs if entry["event"] == "wallet_charged_without_transaction"]
    assert len(charged) == 1
    assert charged[0]["amount"] == 10
    assert charged[0]["log_level"] == "error"
    assert wallet.deductions == [(USER, 10)]
    assert carts.get(USER).total_items == 1
