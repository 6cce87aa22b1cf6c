"""
Record store

MongoDB persistence for users, categories, transactions and budgets.

``RecordStore`` is the read contract the rollup and report code depends on.
``MongoRecordStore`` implements it with pymongo and adds the owner-scoped
CRUD used by the API. The store is constructed explicitly (``connect``) and
torn down explicitly (``close``); there is no module-level connection.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, DecimalException
from typing import Any, Dict, List, Optional, Protocol, Type, TypeVar

from bson import ObjectId
from bson.decimal128 import Decimal128
from bson.errors import InvalidId
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pymongo import ASCENDING, DESCENDING, MongoClient

from errors import TypeMismatchError, ValidationError
from schemas import Budget, Category, Transaction, User

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

REFERENCE_FIELDS = ("user_id", "category_id", "budget_id")

TRANSACTION_ORDER = [("date", ASCENDING), ("_id", ASCENDING)]


class RecordStore(Protocol):
    def find_transactions_by_category(self, category_id: str) -> List[Transaction]:
        ...

    def find_categories_by_budget(self, budget_id: str) -> List[Category]:
        ...

    def find_transactions_by_user_and_date_range(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[Transaction]:
        ...

    def find_category_by_id(self, category_id: str) -> Optional[Category]:
        ...


# ---------- Document conversion ----------

def to_object_id(value: Any) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid ID format") from None


def to_document(model: BaseModel) -> Dict[str, Any]:
    doc = model.model_dump(exclude={"id"})
    for k, v in list(doc.items()):
        if k in REFERENCE_FIELDS and v is not None:
            doc[k] = to_object_id(v)
        elif isinstance(v, Decimal):
            try:
                doc[k] = Decimal128(v)
            except DecimalException as exc:
                raise ValidationError(f"{k} cannot be stored exactly: {v}") from exc
    return doc


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    d = dict(doc)
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, ObjectId):
            d[k] = str(v)
        elif isinstance(v, Decimal128):
            d[k] = v.to_decimal()
    return d


def _load(model_cls: Type[ModelT], doc: Optional[Dict[str, Any]]) -> Optional[ModelT]:
    if doc is None:
        return None
    return model_cls.model_validate(serialize_doc(doc))


def _merge(current: ModelT, changes: Dict[str, Any]) -> ModelT:
    try:
        return type(current).model_validate({**current.model_dump(), **changes})
    except PydanticValidationError as exc:
        raise ValidationError(str(exc)) from exc


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MongoRecordStore:
    def __init__(self, client: MongoClient, database_name: str):
        self.client = client
        self.db = client[database_name]

    @classmethod
    def connect(cls, url: str, database_name: str) -> "MongoRecordStore":
        logger.info("Connecting to MongoDB database %r", database_name)
        return cls(MongoClient(url), database_name)

    def close(self) -> None:
        self.client.close()
        logger.info("MongoDB connection closed")

    def collection_names(self) -> List[str]:
        return self.db.list_collection_names()

    # ---------- Generic helpers ----------

    def _insert(self, collection: str, record: ModelT) -> ModelT:
        doc = to_document(record)
        doc["created_at"] = doc["updated_at"] = _now()
        result = self.db[collection].insert_one(doc)
        return record.model_copy(update={"id": str(result.inserted_id)})

    def _save(self, collection: str, record: ModelT) -> ModelT:
        doc = to_document(record)
        doc["updated_at"] = _now()
        self.db[collection].update_one({"_id": to_object_id(record.id)}, {"$set": doc})
        return record

    def _find_owned(self, collection: str, model_cls: Type[ModelT], user_id: str, record_id: str) -> Optional[ModelT]:
        doc = self.db[collection].find_one({"_id": to_object_id(record_id), "user_id": to_object_id(user_id)})
        return _load(model_cls, doc)

    def _list_owned(self, collection: str, model_cls: Type[ModelT], user_id: str) -> List[ModelT]:
        cursor = self.db[collection].find({"user_id": to_object_id(user_id)}).sort("_id", ASCENDING)
        return [_load(model_cls, d) for d in cursor]

    def _delete_owned(self, collection: str, user_id: str, record_id: str) -> bool:
        doc = self.db[collection].find_one_and_delete(
            {"_id": to_object_id(record_id), "user_id": to_object_id(user_id)}
        )
        return doc is not None

    # ---------- Read contract ----------

    def find_transactions_by_category(self, category_id: str) -> List[Transaction]:
        cursor = self.db["transaction"].find({"category_id": to_object_id(category_id)}).sort(TRANSACTION_ORDER)
        return [_load(Transaction, d) for d in cursor]

    def find_categories_by_budget(self, budget_id: str) -> List[Category]:
        cursor = self.db["category"].find({"budget_id": to_object_id(budget_id)}).sort("_id", ASCENDING)
        return [_load(Category, d) for d in cursor]

    def find_transactions_by_user_and_date_range(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[Transaction]:
        query = {"user_id": to_object_id(user_id), "date": {"$gte": start, "$lt": end}}
        cursor = self.db["transaction"].find(query).sort(TRANSACTION_ORDER)
        return [_load(Transaction, d) for d in cursor]

    def find_category_by_id(self, category_id: str) -> Optional[Category]:
        return _load(Category, self.db["category"].find_one({"_id": to_object_id(category_id)}))

    # ---------- Users ----------

    def create_user(self, user: User) -> User:
        if self.db["user"].find_one({"email": user.email}) is not None:
            raise ValidationError("Email already registered")
        return self._insert("user", user)

    def find_user_by_id(self, user_id: str) -> Optional[User]:
        return _load(User, self.db["user"].find_one({"_id": to_object_id(user_id)}))

    # ---------- Categories ----------

    def _check_budget(self, category: Category) -> None:
        if category.budget_id is not None and self.find_budget(category.user_id, category.budget_id) is None:
            raise ValidationError("Invalid budget")

    def create_category(self, category: Category) -> Category:
        self._check_budget(category)
        return self._insert("category", category)

    def list_categories(self, user_id: str) -> List[Category]:
        return self._list_owned("category", Category, user_id)

    def find_category(self, user_id: str, category_id: str) -> Optional[Category]:
        return self._find_owned("category", Category, user_id, category_id)

    def update_category(self, user_id: str, category_id: str, changes: Dict[str, Any]) -> Optional[Category]:
        current = self.find_category(user_id, category_id)
        if current is None:
            return None
        updated = _merge(current, changes)
        if "budget_id" in changes:
            self._check_budget(updated)
        if "type" in changes and updated.type != current.type:
            if self.db["transaction"].find_one({"category_id": to_object_id(category_id), "type": current.type}):
                raise ValidationError(f"Category type cannot change while {current.type} transactions reference it")
        return self._save("category", updated)

    def delete_category(self, user_id: str, category_id: str) -> bool:
        # Transactions referencing the category are left in place.
        return self._delete_owned("category", user_id, category_id)

    # ---------- Transactions ----------

    def _check_category(self, transaction: Transaction) -> None:
        category = self.find_category(transaction.user_id, transaction.category_id)
        if category is None:
            raise ValidationError("Invalid category")
        if category.type != transaction.type:
            raise TypeMismatchError(category.type)

    def create_transaction(self, transaction: Transaction) -> Transaction:
        self._check_category(transaction)
        return self._insert("transaction", transaction)

    def list_transactions(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        entry_type: Optional[str] = None,
        category_id: Optional[str] = None,
    ) -> List[Transaction]:
        """Owner's transactions, newest first. ``start`` and ``end`` are both inclusive."""
        query: Dict[str, Any] = {"user_id": to_object_id(user_id)}
        if entry_type:
            query["type"] = entry_type
        if category_id:
            query["category_id"] = to_object_id(category_id)
        if start is not None or end is not None:
            query["date"] = {}
            if start is not None:
                query["date"]["$gte"] = start
            if end is not None:
                query["date"]["$lte"] = end
        cursor = self.db["transaction"].find(query).sort([("date", DESCENDING), ("_id", DESCENDING)])
        return [_load(Transaction, d) for d in cursor]

    def find_transaction(self, user_id: str, transaction_id: str) -> Optional[Transaction]:
        return self._find_owned("transaction", Transaction, user_id, transaction_id)

    def update_transaction(self, user_id: str, transaction_id: str, changes: Dict[str, Any]) -> Optional[Transaction]:
        current = self.find_transaction(user_id, transaction_id)
        if current is None:
            return None
        updated = _merge(current, changes)
        if "category_id" in changes or "type" in changes:
            self._check_category(updated)
        return self._save("transaction", updated)

    def delete_transaction(self, user_id: str, transaction_id: str) -> bool:
        return self._delete_owned("transaction", user_id, transaction_id)

    # ---------- Budgets ----------

    def create_budget(self, budget: Budget) -> Budget:
        return self._insert("budget", budget)

    def list_budgets(self, user_id: str) -> List[Budget]:
        return self._list_owned("budget", Budget, user_id)

    def find_budget(self, user_id: str, budget_id: str) -> Optional[Budget]:
        return self._find_owned("budget", Budget, user_id, budget_id)

    def update_budget(self, user_id: str, budget_id: str, changes: Dict[str, Any]) -> Optional[Budget]:
        current = self.find_budget(user_id, budget_id)
        if current is None:
            return None
        return self._save("budget", _merge(current, changes))

    def delete_budget(self, user_id: str, budget_id: str) -> bool:
        # Linked categories keep their budget_id and simply stop rolling up anywhere.
        return self._delete_owned("budget", user_id, budget_id)
