"""
Shared fixtures

Services run against the in-process MemoryStore; the auth service is
replaced by DevTokenVerifier and in-memory wallet/notifier fakes.
"""
import pytest
from fastapi.testclient import TestClient

from cart import CartService
from catalog import Catalog
from checkout import CheckoutEngine
from collaborators import DevTokenVerifier
from config import Settings
from database import MemoryStore
from errors import CollaboratorError
from main import Services, create_app
from offers import OfferTier
from ratings import RatingService
from schemas import ItemCreate
from transactions import TransactionLedger

USER = "user123"
AUTH = {"Authorization": f"Bearer test-user-{USER}"}


def auth_for(user_id: str) -> dict:
    return {"Authorization": f"Bearer test-user-{user_id}"}


class FakeWallet:
    def __init__(self, balance: float = 1000.0, fail_on: str = None):
        self.balance = balance
        self.fail_on = fail_on
        self.deductions = []

    def get_balance(self, user_id):
        if self.fail_on == "get_balance":
            raise CollaboratorError("balance service unreachable")
        return self.balance

    def deduct(self, user_id, amount):
        if self.fail_on == "deduct":
            raise CollaboratorError("deduction rejected")
        self.balance -= amount
        self.deductions.append((user_id, amount))


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def notify(self, transaction_id, amount):
        if self.fail:
            raise CollaboratorError("notification service down")
        self.sent.append((transaction_id, amount))


CATALOG = {
    "apple": dict(name="Apple", unit_price=10, offer_tier=OfferTier.NONE, stock_quantity=100),
    "orange": dict(name="Orange", unit_price=20, offer_tier=OfferTier.NONE, stock_quantity=100),
    "apple_offer": dict(name="Apple with Offer", unit_price=10,
                        offer_tier=OfferTier.BUY_1_GET_1_FREE, stock_quantity=100),
    "orange_offer": dict(name="Orange with Offer", unit_price=20,
                         offer_tier=OfferTier.BUY_2_GET_3_FREE, stock_quantity=100),
    "mango_offer": dict(name="Mango with Offer", unit_price=30,
                        offer_tier=OfferTier.BUY_3_GET_5_FREE, stock_quantity=100),
    "kiwi": dict(name="Kiwi", unit_price=0.1, category="exotic", stock_quantity=100),
    "scarce": dict(name="Dragon Fruit", unit_price=5, stock_quantity=2),
    "sold_out": dict(name="Durian", unit_price=50, in_stock=False, stock_quantity=0),
}


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def catalog(store):
    return Catalog(store)


@pytest.fixture
def items(catalog):
    return {key: catalog.create(ItemCreate(**data)) for key, data in CATALOG.items()}


@pytest.fixture
def carts(store, catalog):
    return CartService(store, catalog)


@pytest.fixture
def ledger(store):
    return TransactionLedger(store)


@pytest.fixture
def engine(carts, ledger, catalog):
    return CheckoutEngine(carts, ledger, catalog)


@pytest.fixture
def ratings(store, catalog, ledger):
    return RatingService(store, catalog, ledger)


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def purchase(carts, engine):
    """Buy quantity units of each given item for user_id; returns the transaction."""

    def _purchase(user_id, *item_ids, quantity=1, payment_method="CASH"):
        for item_id in item_ids:
            carts.add(user_id, item_id, quantity)
        return engine.checkout(user_id, payment_method)

    return _purchase


@pytest.fixture
def services(store, catalog, carts, ledger, engine, ratings, wallet, notifier):
    return Services(
        store=store,
        catalog=catalog,
        carts=carts,
        ledger=ledger,
        checkout=engine,
        ratings=ratings,
        verifier=DevTokenVerifier(),
        wallet_factory=lambda authorization: wallet,
        notifier_factory=lambda authorization: notifier,
    )


@pytest.fixture
def test_client(services):
    app = create_app(Settings(), services=services)
    return TestClient(app)
