"""
Checkout

Turns a user's cart into a COMPLETED transaction. Loading the cart, payment,
recording the transaction and clearing the cart run under the user's cart
lock; a failure before the transaction is recorded leaves the cart as it was.
Stock decrement and the order notification are best-effort and never undo a
recorded transaction.
"""
from typing import Optional

import structlog

from cart import CartService, round_money, to_decimal
from catalog import Catalog
from errors import BusinessRuleError, CollaboratorError, PaymentFailedError, ValidationError, errmsg
from schemas import Cart, Currency, PaymentMethod, Transaction, TransactionItem, TransactionStatus
from transactions import TransactionLedger

logger = structlog.get_logger(__name__)


def parse_payment_method(value: str) -> PaymentMethod:
    try:
        return PaymentMethod((value or "").strip().upper())
    except ValueError:
        raise ValidationError("INVALID_PAYMENT_METHOD", errmsg.INVALID_PAYMENT_METHOD) from None


def build_transaction(cart: Cart, method: PaymentMethod, notes: Optional[str] = None,
                      currency: Currency = Currency.INR) -> Transaction:
    """Snapshot cart lines into transaction items; only paid units are priced."""
    items = [
        TransactionItem(
            item_id=line.item_id,
            name=line.name,
            paid_quantity=line.paid_quantity,
            unit_price=line.unit_price,
            offer_tier=line.offer_tier,
            free_quantity=line.free_quantity,
            subtotal=float(round_money(to_decimal(line.unit_price) * line.paid_quantity)),
        )
        for line in cart.lines
    ]
    return Transaction(
        user_id=cart.user_id,
        items=items,
        total_amount=cart.total_price,
        discount_amount=cart.discount_amount,
        final_amount=cart.final_price,
        currency=currency,
        payment_method=method,
        status=TransactionStatus.COMPLETED,
        notes=notes,
    )


class CheckoutEngine:
    def __init__(self, carts: CartService, ledger: TransactionLedger, catalog: Catalog,
                 currency: Currency = Currency.INR):
        self.carts = carts
        self.ledger = ledger
        self.catalog = catalog
        self.currency = currency

    def checkout(self, user_id: str, payment_method: str, notes: Optional[str] = None,
                 wallet=None, notifier=None) -> Transaction:
        """
        Check out the user's cart.

        wallet must provide get_balance(user_id) and deduct(user_id, amount);
        it is only used for WALLET payments. notifier provides
        notify(transaction_id, amount) and may be omitted.
        """
        log = logger.bind(user_id=user_id)
        with self.carts.lock(user_id):
            cart = self.carts.snapshot(user_id)
            if not cart.lines:
                raise BusinessRuleError("EMPTY_CART", errmsg.EMPTY_CART)

            method = parse_payment_method(payment_method)
            if method is PaymentMethod.WALLET:
                self._charge_wallet(user_id, cart.final_price, wallet)

            try:
                transaction = self.ledger.record(
                    build_transaction(cart, method, notes, currency=self.currency)
                )
            except Exception:
                if method is PaymentMethod.WALLET:
                    log.exception("wallet_charged_without_transaction", amount=cart.final_price)
                raise
            log = log.bind(transaction_id=transaction.id)

            self._release_stock(cart, log)
            self._notify(transaction, notifier, log)

            self.carts.clear(user_id)

        log.info("checkout_completed", payment_method=method.value, final_amount=transaction.final_amount)
        return transaction

    def _charge_wallet(self, user_id: str, amount: float, wallet) -> None:
        if wallet is None:
            raise PaymentFailedError("wallet service not configured")
        try:
            balance = wallet.get_balance(user_id)
        except CollaboratorError as e:
            raise PaymentFailedError(str(e)) from e
        if balance < amount:
            raise BusinessRuleError("INSUFFICIENT_BALANCE", errmsg.INSUFFICIENT_BALANCE)
        try:
            wallet.deduct(user_id, amount)
        except CollaboratorError as e:
            raise PaymentFailedError(str(e)) from e

    def _release_stock(self, cart: Cart, log) -> None:
        # Best-effort: a failed decrement leaves stock to be reconciled later.
        for line in cart.lines:
            try:
                self.catalog.adjust_stock(line.item_id, -line.total_quantity)
            except Exception:
                log.exception("stock_decrement_failed", item_id=line.item_id, quantity=line.total_quantity)

    def _notify(self, transaction: Transaction, notifier, log) -> None:
        # Best-effort.
        if notifier is None:
            return
        try:
            notifier.notify(transaction.id, transaction.final_amount)
        except Exception:
            log.exception("order_notification_failed")
