"""
Cart aggregation

Keeps one cart per user. Every mutation re-derives each touched line's
paid/free split from its offer tier and then refolds the cart totals from
the line list, so totals never drift from the lines.
"""
import threading
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable

import structlog

from catalog import Catalog
from database import DocumentStore
from errors import BusinessRuleError, NotFoundError, ValidationError, errmsg
from offers import resolve
from schemas import Cart, CartLine, utcnow

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


def to_decimal(value: float) -> Decimal:
    return Decimal(str(value))


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_totals(lines: Iterable[CartLine]) -> Dict[str, float]:
    total_items = 0
    total_price = Decimal(0)
    discount = Decimal(0)
    for line in lines:
        price = to_decimal(line.unit_price)
        total_items += line.total_quantity
        total_price += price * line.total_quantity
        discount += price * line.free_quantity
    total_price = round_money(total_price)
    discount = round_money(discount)
    return {
        "total_items": total_items,
        "total_price": float(total_price),
        "discount_amount": float(discount),
        "final_price": float(round_money(total_price - discount)),
    }


class KeyedLocks:
    """One re-entrant lock per key, created on first use."""

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def __call__(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock


class CartService:
    collection = "cart"

    def __init__(self, store: DocumentStore, catalog: Catalog, locks: KeyedLocks = None):
        self.store = store
        self.catalog = catalog
        self.locks = locks or KeyedLocks()

    def lock(self, user_id: str) -> threading.RLock:
        return self.locks(user_id)

    def _load(self, user_id: str) -> Cart:
        doc = self.store.find_one(self.collection, {"user_id": user_id})
        if not doc:
            return Cart(user_id=user_id)
        doc.pop("_id", None)
        return Cart.model_validate(doc)

    def _save(self, cart: Cart) -> Cart:
        cart = cart.model_copy(update=compute_totals(cart.lines))
        cart.updated_at = utcnow()
        if not cart.lines:
            self.store.delete_one(self.collection, {"user_id": cart.user_id})
        else:
            self.store.replace_one(
                self.collection, {"user_id": cart.user_id}, cart.model_dump(), upsert=True
            )
        return cart

    def get(self, user_id: str) -> Cart:
        with self.lock(user_id):
            return self._load(user_id)

    def snapshot(self, user_id: str) -> Cart:
        """Read-only copy of the cart, detached from later mutations."""
        with self.lock(user_id):
            return self._load(user_id).model_copy(deep=True)

    def add(self, user_id: str, item_id: str, quantity: int) -> Cart:
        """Add quantity more units; the line is re-priced with the item's current offer."""
        if quantity is None or quantity <= 0:
            raise ValidationError("INVALID_QUANTITY", errmsg.INVALID_QUANTITY)

        item = self.catalog.lookup(item_id)
        if not item.in_stock or item.stock_quantity < quantity:
            raise BusinessRuleError("OUT_OF_STOCK", errmsg.OUT_OF_STOCK)

        with self.lock(user_id):
            cart = self._load(user_id)
            line = cart.line(item_id)
            if line is None:
                paid, free = resolve(quantity, item.offer_tier)
                cart.lines.append(CartLine(
                    item_id=item_id,
                    name=item.name,
                    unit_price=item.unit_price,
                    paid_quantity=paid,
                    free_quantity=free,
                    offer_tier=item.offer_tier,
                ))
            else:
                paid, free = resolve(line.total_quantity + quantity, item.offer_tier)
                line.name = item.name
                line.unit_price = item.unit_price
                line.offer_tier = item.offer_tier
                line.paid_quantity = paid
                line.free_quantity = free
            cart = self._save(cart)

        logger.info("cart_item_added", user_id=user_id, item_id=item_id, quantity=quantity,
                    paid=paid, free=free, final_price=cart.final_price)
        return cart

    def set_quantity(self, user_id: str, item_id: str, quantity: int) -> Cart:
        """Set the line's absolute total; the tier stored on the line is kept."""
        with self.lock(user_id):
            cart = self._load(user_id)
            line = cart.line(item_id)
            if line is None:
                raise NotFoundError("CART_ITEM_NOT_FOUND", errmsg.CART_ITEM_NOT_FOUND)
            if quantity <= 0:
                cart.lines.remove(line)
            else:
                line.paid_quantity, line.free_quantity = resolve(quantity, line.offer_tier)
            cart = self._save(cart)

        logger.info("cart_item_updated", user_id=user_id, item_id=item_id, quantity=quantity)
        return cart

    def remove(self, user_id: str, item_id: str) -> Cart:
        with self.lock(user_id):
            cart = self._load(user_id)
            line = cart.line(item_id)
            if line is None:
                raise NotFoundError("CART_ITEM_NOT_FOUND", errmsg.CART_ITEM_NOT_FOUND)
            cart.lines.remove(line)
            cart = self._save(cart)

        logger.info("cart_item_removed", user_id=user_id, item_id=item_id)
        return cart

    def clear(self, user_id: str) -> Cart:
        with self.lock(user_id):
            self.store.delete_one(self.collection, {"user_id": user_id})
        logger.info("cart_cleared", user_id=user_id)
        return Cart(user_id=user_id)
