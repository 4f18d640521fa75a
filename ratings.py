"""
Item ratings

Only users holding a COMPLETED transaction that contains an item may rate
it. One rating per user and item; resubmitting updates it. The item's
average rating is recomputed after every write or delete.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple

import structlog
from pymongo import DESCENDING

from cart import KeyedLocks
from catalog import Catalog
from database import DocumentStore, create_document, get_documents, to_str_id
from errors import NotFoundError, NotPurchasedError, ValidationError, errmsg
from schemas import RatableItem, Rating, RatingEntry, RatingResult, RatingSummary, utcnow
from transactions import TransactionLedger

logger = structlog.get_logger(__name__)


def average(values: List[int]) -> float:
    """Mean rounded half-up to one decimal; 0 for no values."""
    if not values:
        return 0.0
    mean = Decimal(sum(values)) / Decimal(len(values))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


class RatingService:
    collection = "rating"

    def __init__(self, store: DocumentStore, catalog: Catalog, ledger: TransactionLedger):
        self.store = store
        self.catalog = catalog
        self.ledger = ledger
        self.locks = KeyedLocks()

    def _find(self, user_id: str, item_id: str) -> Optional[dict]:
        return self.store.find_one(self.collection, {"user_id": user_id, "item_id": item_id})

    def _values(self, item_id: str) -> List[int]:
        return [d["value"] for d in get_documents(self.store, self.collection, {"item_id": item_id})]

    def refresh_average(self, item_id: str) -> Tuple[float, int]:
        values = self._values(item_id)
        avg = average(values)
        if self.catalog.exists(item_id):
            self.catalog.set_rating(item_id, avg)
        return avg, len(values)

    def rate(self, user_id: str, item_id: str, value: int, review: Optional[str] = None) -> RatingResult:
        if value is None or not 1 <= value <= 5:
            raise ValidationError("INVALID_RATING", errmsg.INVALID_RATING)

        self.catalog.lookup(item_id)
        purchase = self.ledger.find_completed_purchase(user_id, item_id)
        if purchase is None:
            raise NotPurchasedError()

        with self.locks(item_id):
            existing = self._find(user_id, item_id)
            if existing:
                changes = {"value": value, "updated_at": utcnow()}
                if review is not None:
                    changes["review"] = review
                doc = self.store.update_one(self.collection, {"_id": existing["_id"]}, set=changes)
            else:
                rating = Rating(
                    user_id=user_id, item_id=item_id, value=value,
                    review=review, transaction_id=purchase.id,
                )
                create_document(self.store, self.collection, rating)
                doc = self._find(user_id, item_id)
            avg, count = self.refresh_average(item_id)

        logger.info("item_rated", user_id=user_id, item_id=item_id, value=value,
                    updated=bool(existing), average_rating=avg)
        return RatingResult(
            rating=Rating.model_validate(to_str_id(doc)),
            average_rating=avg,
            total_ratings=count,
        )

    def delete(self, user_id: str, item_id: str) -> Tuple[float, int]:
        with self.locks(item_id):
            if not self.store.delete_one(self.collection, {"user_id": user_id, "item_id": item_id}):
                raise NotFoundError("RATING_NOT_FOUND", errmsg.RATING_NOT_FOUND)
            avg, count = self.refresh_average(item_id)
        logger.info("rating_deleted", user_id=user_id, item_id=item_id, average_rating=avg)
        return avg, count

    def get_user_rating(self, user_id: str, item_id: str) -> Rating:
        doc = self._find(user_id, item_id)
        if not doc:
            raise NotFoundError("RATING_NOT_FOUND", "You have not rated this item")
        return Rating.model_validate(to_str_id(doc))

    def list_user_ratings(self, user_id: str) -> List[Rating]:
        docs = get_documents(self.store, self.collection, {"user_id": user_id},
                             sort=[("updated_at", DESCENDING)])
        return [Rating.model_validate(to_str_id(d)) for d in docs]

    def item_summary(self, item_id: str) -> RatingSummary:
        item = self.catalog.lookup(item_id)
        docs = get_documents(self.store, self.collection, {"item_id": item_id},
                             sort=[("created_at", DESCENDING)])
        return RatingSummary(
            item_id=item_id,
            item_name=item.name,
            average_rating=average([d["value"] for d in docs]),
            total_ratings=len(docs),
            ratings=[
                RatingEntry(value=d["value"], review=d.get("review"), created_at=d["created_at"])
                for d in docs
            ],
        )

    def ratable_items(self, user_id: str) -> List[RatableItem]:
        """Items bought in COMPLETED transactions and not rated yet, with the first purchase time."""
        rated = {d["item_id"] for d in get_documents(self.store, self.collection, {"user_id": user_id})}
        ratable = {}
        for transaction in reversed(self.ledger.completed_purchases(user_id)):
            for entry in transaction.items:
                if entry.item_id in rated or entry.item_id in ratable:
                    continue
                ratable[entry.item_id] = RatableItem(
                    item_id=entry.item_id,
                    item_name=entry.name,
                    purchased_at=transaction.created_at,
                )
        return list(ratable.values())
