"""Persisted checkout transactions and their status transitions."""
from typing import List, Optional

import structlog
from pymongo import DESCENDING

from database import DocumentStore, create_document, get_documents, parse_object_id, to_str_id
from errors import NotFoundError, ValidationError, errmsg
from schemas import Transaction, TransactionStatus, utcnow

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS = {
    TransactionStatus.PENDING: {
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
    },
    TransactionStatus.COMPLETED: {
        TransactionStatus.CANCELLED,
        TransactionStatus.REFUNDED,
    },
}


class TransactionLedger:
    collection = "transaction"

    def __init__(self, store: DocumentStore):
        self.store = store

    @staticmethod
    def _load(doc: dict) -> Transaction:
        return Transaction.model_validate(to_str_id(doc))

    def _find(self, transaction_id: str, user_id: Optional[str] = None) -> dict:
        _id = parse_object_id(transaction_id)
        doc = None
        if _id is not None:
            query = {"_id": _id}
            if user_id is not None:
                query["user_id"] = user_id
            doc = self.store.find_one(self.collection, query)
        if not doc:
            raise NotFoundError("TRANSACTION_NOT_FOUND", errmsg.TRANSACTION_NOT_FOUND)
        return doc

    def record(self, transaction: Transaction) -> Transaction:
        transaction_id = create_document(self.store, self.collection, transaction)
        logger.info("transaction_recorded", transaction_id=transaction_id,
                    user_id=transaction.user_id, status=transaction.status,
                    final_amount=transaction.final_amount)
        return self._load(self._find(transaction_id))

    def history(self, user_id: str) -> List[Transaction]:
        docs = get_documents(self.store, self.collection, {"user_id": user_id},
                             sort=[("created_at", DESCENDING)])
        return [self._load(d) for d in docs]

    def get(self, user_id: str, transaction_id: str) -> Transaction:
        return self._load(self._find(transaction_id, user_id))

    def completed_purchases(self, user_id: str, item_id: Optional[str] = None) -> List[Transaction]:
        query = {"user_id": user_id, "status": TransactionStatus.COMPLETED.value}
        if item_id is not None:
            query["items.item_id"] = item_id
        docs = get_documents(self.store, self.collection, query, sort=[("created_at", DESCENDING)])
        return [self._load(d) for d in docs]

    def find_completed_purchase(self, user_id: str, item_id: str) -> Optional[Transaction]:
        """Most recent COMPLETED transaction of user_id that contains item_id."""
        purchases = self.completed_purchases(user_id, item_id)
        return purchases[0] if purchases else None

    def transition(self, transaction_id: str, status: TransactionStatus) -> Transaction:
        current = TransactionStatus(self._find(transaction_id)["status"])
        target = TransactionStatus(status)
        if target not in ALLOWED_TRANSITIONS.get(current, set()):
            raise ValidationError(
                "INVALID_STATUS_TRANSITION",
                errmsg.INVALID_STATUS_TRANSITION.format(current=current.value, target=target.value),
            )
        doc = self.store.update_one(
            self.collection,
            {"_id": parse_object_id(transaction_id), "status": current.value},
            set={"status": target.value, "updated_at": utcnow()},
        )
        if not doc:
            raise NotFoundError("TRANSACTION_NOT_FOUND", errmsg.TRANSACTION_NOT_FOUND)
        logger.info("transaction_status_changed", transaction_id=transaction_id,
                    previous=current.value, status=target.value)
        return self._load(doc)
