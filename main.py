import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import config
from database import MongoRecordStore, to_object_id
from errors import FinanceError, NotFoundError
from reports import build_monthly_report
from rollup import budget_rollup, category_rollup
from schemas import (
    Budget,
    BudgetRollup,
    Category,
    CategoryRollup,
    EntryType,
    MonthlyReport,
    Transaction,
    User,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # A store placed on app.state before startup is used as-is and left open.
    owns_store = getattr(app.state, "store", None) is None
    if owns_store:
        app.state.store = MongoRecordStore.connect(config.DATABASE_URL, config.DATABASE_NAME)
    try:
        yield
    finally:
        if owns_store:
            app.state.store.close()
            app.state.store = None


app = FastAPI(title="Budgeting API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FinanceError)
async def finance_error_handler(request: Request, exc: FinanceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ---------- Dependencies ----------

def get_store(request: Request) -> MongoRecordStore:
    return request.app.state.store


def get_user_id(
    x_user_id: Optional[str] = Header(None, alias="x-user-id"),
    store: MongoRecordStore = Depends(get_store),
) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    user_id = str(to_object_id(x_user_id))
    if store.find_user_by_id(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def require(record, label: str):
    if record is None:
        raise NotFoundError(f"{label} not found")
    return record


def deleted(found: bool, label: str) -> Dict[str, str]:
    if not found:
        raise NotFoundError(f"{label} not found")
    return {"message": f"{label} deleted successfully"}


# ---------- Root & Health ----------

@app.get("/")
def read_root():
    return {"message": "Budgeting API is running"}


@app.get("/health")
def health(store: MongoRecordStore = Depends(get_store)):
    """Check that the record store answers."""
    response: Dict[str, Any] = {
        "backend": "running",
        "database": config.DATABASE_NAME,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = store.collection_names()[:10]
        response["connection_status"] = "Connected"
    except Exception as e:
        logger.warning("Health check could not reach the database: %s", e)
        response["connection_status"] = f"Error: {str(e)[:50]}"
    return response


# ---------- Users ----------

class CreateUser(BaseModel):
    name: str
    email: str = Field(..., pattern=r".+@.+\..+")
    role: Literal["admin", "user"] = "user"


@app.post("/api/users", status_code=201, response_model=User)
def create_user(payload: CreateUser, store: MongoRecordStore = Depends(get_store)):
    return store.create_user(User(**payload.model_dump()))


@app.get("/api/users/me", response_model=User)
def read_current_user(user_id: str = Depends(get_user_id), store: MongoRecordStore = Depends(get_store)):
    return store.find_user_by_id(user_id)


# ---------- Categories ----------

class CreateCategory(BaseModel):
    name: str
    type: EntryType
    budget_id: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None


class UpdateCategory(BaseModel):
    name: Optional[str] = None
    type: Optional[EntryType] = None
    budget_id: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None


@app.get("/api/categories", response_model=List[Category])
def list_categories(user_id: str = Depends(get_user_id), store: MongoRecordStore = Depends(get_store)):
    return store.list_categories(user_id)


@app.get("/api/categories/{category_id}", response_model=CategoryRollup)
def read_category(category_id: str, user_id: str = Depends(get_user_id), store: MongoRecordStore = Depends(get_store)):
    category = require(store.find_category(user_id, category_id), "Category")
    return category_rollup(store, category)


@app.post("/api/categories", status_code=201, response_model=Category)
def create_category(payload: CreateCategory, user_id: str = Depends(get_user_id), store: MongoRecordStore = Depends(get_store)):
    return store.create_category(Category(user_id=user_id, **payload.model_dump()))


@app.put("/api/categories/{category_id}", response_model=Category)
def update_category(
    category_id: str,
    payload: UpdateCategory,
    user_id: str = Depends(get_user_id),
    store: MongoRecordStore = Depends(get_store),
):
    changes = payload.model_dump(exclude_unset=True)
    return require(store.update_category(user_id, category_id, changes), "Category")


@app.delete("/api/categories/{category_id}")
def delete_category(category_id: str, user_id: str = Depends(get_user_id), store: MongoRecordStore = Depends(get_store)):
    return deleted(store.delete_category(user_id, category_id), "Category")


# ---------- Transactions ----------

class CreateTransaction(BaseModel):
    category_id: str
    amount: Decimal = Field(..., ge=0)
    type: EntryType
    date: datetime
    note: Optional[str] = None
    account: Optional[str] = None


class UpdateTransaction(BaseModel):
    category_id: Optional[str] = None
    amount: Optional[Decimal] = Field(None, ge=0)
    type: Optional[EntryType] = None
    date: Optional[datetime] = None
    note: Optional[str] = None
    account: Optional[str] = None


@app.get("/api/transactions", response_model=List[Transaction])
def list_transactions(
    start: Optional[datetime] = Query(default=None, alias="from", description="On or after this date"),
    end: Optional[datetime] = Query(default=None, alias="to", description="On or before this date"),
    type: Optional[EntryType] = Query(default=None),
    category: Optional[str] = Query(default=None, description="Category id"),
    user_id: str = Depends(get_user_id),
    store: MongoRecordStore = Depends(get_store),
):
    return store.list_transactions(user_id, start=start, end=end, entry_type=type, category_id=category)


@app.get("/api/transactions/{transaction_id}", response_model=Transaction)
def read_transaction(transaction_id: str, user_id: str = Depends(get_user_id), store: MongoRecordStore = Depends(get_store)):
    return require(store.find_transaction(user_id, transaction_id), "Transaction")


@app.post("/api/transactions", status_code=201, response_model=Transaction)
def create_transaction(payload: CreateTransaction, user_id: str = Depends(get_user_id), store: MongoRecordStore = Depends(get_store)):
    return store.create_transaction(Transaction(user_id=user_id, **payload.model_dump()))


@app.put("/api/transactions/{transaction_id}", response_model=Transaction)
def update_transaction(
    transaction_id: str,
    payload: UpdateTransaction,
    user_id: str = Depends(get_user_id),
    store: MongoRecordStore = Depends(get_store),
):
    changes = payload.model_dump(exclude_unset=True)
    return require(store.update_transaction(user_id, transaction_id, changes), "Transaction")


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(transaction_id: str, user_id: str = Depends(get_user_id), store: MongoRecordStore = Depends(get_store)):
    return deleted(store.delete_transaction(user_id, transaction_id), "Transaction")


# ---------- Budgets ----------

class CreateBudget(BaseModel):
    name: str
    start_date: datetime
    end_date: Optional[datetime] = None
    limit: Decimal = Field(..., ge=0)
    spent: Decimal = Field(Decimal("0"), ge=0)


class UpdateBudget(BaseModel):
    name: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: Optional[Decimal] = Field(None, ge=0)
    spent: Optional[Decimal] = Field(None, ge=0)


@app.get("/api/budgets", response_model=List[Budget])
def list_budgets(user_id: str = Depends(get_user_id), store: MongoRecordStore = Depends(get_store)):
    return store.list_budgets(user_id)


@app.get("/api/budgets/{budget_id}", response_model=BudgetRollup)
def read_budget(budget_id: str, user_id: str = Depends(get_user_id), store: MongoRecordStore = Depends(get_store)):
    budget = require(store.find_budget(user_id, budget_id), "Budget")
    return budget_rollup(store, budget)


@app.post("/api/budgets", status_code=201, response_model=Budget)
def create_budget(payload: CreateBudget, user_id: str = Depends(get_user_id), store: MongoRecordStore = Depends(get_store)):
    return store.create_budget(Budget(user_id=user_id, **payload.model_dump()))


@app.put("/api/budgets/{budget_id}", response_model=Budget)
def update_budget(
    budget_id: str,
    payload: UpdateBudget,
    user_id: str = Depends(get_user_id),
    store: MongoRecordStore = Depends(get_store),
):
    changes = payload.model_dump(exclude_unset=True)
    return require(store.update_budget(user_id, budget_id, changes), "Budget")


@app.delete("/api/budgets/{budget_id}")
def delete_budget(budget_id: str, user_id: str = Depends(get_user_id), store: MongoRecordStore = Depends(get_store)):
    return deleted(store.delete_budget(user_id, budget_id), "Budget")


# ---------- Reports ----------

@app.get("/api/reports/monthly", response_model=MonthlyReport)
def monthly_report(
    month: Optional[str] = Query(default=None, description="YYYY-MM, defaults to the current month"),
    user_id: str = Depends(get_user_id),
    store: MongoRecordStore = Depends(get_store),
):
    return build_monthly_report(store, user_id, month)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
