"""Catalog of purchasable items: lookup, stock and admin maintenance."""
import re
from typing import List, Optional

import structlog
from pymongo import ASCENDING

from database import DocumentStore, create_document, get_documents, parse_object_id, to_str_id
from errors import NotFoundError, errmsg
from offers import OfferTier, describe
from schemas import Item, ItemCreate, ItemUpdate, utcnow

logger = structlog.get_logger(__name__)


class Catalog:
    collection = "item"

    def __init__(self, store: DocumentStore):
        self.store = store

    def _filter(self, item_id: str) -> dict:
        _id = parse_object_id(item_id)
        if _id is None:
            raise NotFoundError("ITEM_NOT_FOUND", errmsg.ITEM_NOT_FOUND)
        return {"_id": _id}

    def _load(self, doc: Optional[dict]) -> Item:
        if not doc:
            raise NotFoundError("ITEM_NOT_FOUND", errmsg.ITEM_NOT_FOUND)
        return Item.model_validate(to_str_id(doc))

    def lookup(self, item_id: str) -> Item:
        return self._load(self.store.find_one(self.collection, self._filter(item_id)))

    def exists(self, item_id: str) -> bool:
        _id = parse_object_id(item_id)
        return _id is not None and self.store.find_one(self.collection, {"_id": _id}) is not None

    def list(self, q: Optional[str] = None, category: Optional[str] = None,
             has_offer: bool = False, limit: int = 0) -> List[Item]:
        query = {}
        if q:
            query["name"] = {"$regex": re.escape(q), "$options": "i"}
        if category:
            query["category"] = category
            query["in_stock"] = True
        if has_offer:
            query["offer_tier"] = {"$ne": OfferTier.NONE.value}
            query["in_stock"] = True
        docs = get_documents(self.store, self.collection, query, limit=limit, sort=[("name", ASCENDING)])
        return [Item.model_validate(to_str_id(d)) for d in docs]

    def create(self, data: ItemCreate) -> Item:
        payload = data.model_dump()
        if not payload.get("offer_description") and payload["offer_tier"] != OfferTier.NONE.value:
            payload["offer_description"] = describe(payload["offer_tier"])
        payload["rating"] = 0
        item_id = create_document(self.store, self.collection, payload)
        logger.info("item_created", item_id=item_id, name=data.name)
        return self.lookup(item_id)

    def update(self, item_id: str, data: ItemUpdate) -> Item:
        changes = data.model_dump(exclude_unset=True)
        changes["updated_at"] = utcnow()
        doc = self.store.update_one(self.collection, self._filter(item_id), set=changes)
        logger.info("item_updated", item_id=item_id, fields=sorted(changes))
        return self._load(doc)

    def delete(self, item_id: str) -> Item:
        item = self.lookup(item_id)
        self.store.delete_one(self.collection, self._filter(item_id))
        logger.info("item_deleted", item_id=item_id)
        return item

    def set_stock(self, item_id: str, quantity: int) -> Item:
        doc = self.store.update_one(
            self.collection,
            self._filter(item_id),
            set={"stock_quantity": quantity, "in_stock": quantity > 0, "updated_at": utcnow()},
        )
        return self._load(doc)

    def adjust_stock(self, item_id: str, delta: int) -> Item:
        """Apply a signed stock delta; an item that runs out is marked out of stock."""
        doc = self.store.update_one(self.collection, self._filter(item_id), inc={"stock_quantity": delta})
        if not doc:
            raise NotFoundError("ITEM_NOT_FOUND", errmsg.ITEM_NOT_FOUND)
        stock = doc.get("stock_quantity", 0)
        if stock <= 0:
            if stock < 0:
                logger.warning("stock_oversold", item_id=item_id, shortfall=-stock)
            doc = self.store.update_one(
                self.collection, self._filter(item_id),
                set={"stock_quantity": 0, "in_stock": False, "updated_at": utcnow()},
            )
        return self._load(doc)

    def set_rating(self, item_id: str, value: float) -> None:
        self.store.update_one(self.collection, self._filter(item_id), set={"rating": value})
