from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from errors import TypeMismatchError, ValidationError
from schemas import Budget, Category, Transaction, User


def _food(store, user_id, **kwargs):
    return store.create_category(Category(user_id=user_id, name="Food", type="expense", **kwargs))


def _expense(user_id, category_id, amount="10", day=5):
    return Transaction(user_id=user_id, category_id=category_id, amount=Decimal(amount),
                       type="expense", date=datetime(2025, 1, day))


def test_amounts_round_trip_as_decimal(store, user):
    food = _food(store, user.id)
    created = store.create_transaction(_expense(user.id, food.id, amount="19.99"))

    loaded = store.find_transaction(user.id, created.id)

    assert isinstance(loaded.amount, Decimal)
    assert loaded.amount == Decimal("19.99")
    assert loaded.category_id == food.id


def test_transaction_type_must_match_category(store, user):
    food = _food(store, user.id)
    income = Transaction(user_id=user.id, category_id=food.id, amount=Decimal("5"),
                         type="income", date=datetime(2025, 1, 1))
    with pytest.raises(TypeMismatchError) as excinfo:
        store.create_transaction(income)
    assert excinfo.value.category_type == "expense"


def test_transaction_needs_category_of_same_owner(store, user, other_user):
    foreign = _food(store, other_user.id)
    with pytest.raises(ValidationError, match="Invalid category"):
        store.create_transaction(_expense(user.id, foreign.id))


def test_update_rechecks_type_only_when_category_or_type_changes(store, user):
    food = _food(store, user.id)
    salary = store.create_category(Category(user_id=user.id, name="Salary", type="income"))
    txn = store.create_transaction(_expense(user.id, food.id))

    with pytest.raises(TypeMismatchError):
        store.update_transaction(user.id, txn.id, {"category_id": salary.id})

    updated = store.update_transaction(user.id, txn.id, {"category_id": salary.id, "type": "income"})
    assert updated.type == "income"

    store.delete_category(user.id, salary.id)
    noted = store.update_transaction(user.id, txn.id, {"note": "lunch"})
    assert noted.note == "lunch"


def test_update_with_invalid_value_is_rejected(store, user):
    food = _food(store, user.id)
    txn = store.create_transaction(_expense(user.id, food.id))
    with pytest.raises(ValidationError):
        store.update_transaction(user.id, txn.id, {"amount": Decimal("-1")})


def test_category_budget_must_belong_to_owner(store, user, other_user):
    budget = store.create_budget(Budget(user_id=other_user.id, name="Theirs",
                                        start_date=datetime(2025, 1, 1), limit=Decimal("10")))
    with pytest.raises(ValidationError, match="Invalid budget"):
        _food(store, user.id, budget_id=budget.id)


def test_owner_scoping_hides_other_users_records(store, user, other_user):
    food = _food(store, user.id)
    assert store.find_category(other_user.id, food.id) is None
    assert store.update_category(other_user.id, food.id, {"name": "Mine"}) is None
    assert store.delete_category(other_user.id, food.id) is False
    assert store.list_categories(other_user.id) == []


def test_deleting_category_keeps_transactions(store, user):
    food = _food(store, user.id)
    txn = store.create_transaction(_expense(user.id, food.id))

    assert store.delete_category(user.id, food.id) is True

    assert store.find_transaction(user.id, txn.id) is not None
    assert store.find_category_by_id(food.id) is None


def test_transactions_by_category_in_date_order(store, user):
    food = _food(store, user.id)
    for day in (20, 2, 11):
        store.create_transaction(_expense(user.id, food.id, day=day))
    days = [t.date.day for t in store.find_transactions_by_category(food.id)]
    assert days == [2, 11, 20]


def test_date_range_is_half_open(store, user):
    food = _food(store, user.id)
    store.create_transaction(_expense(user.id, food.id, day=1))
    store.create_transaction(Transaction(user_id=user.id, category_id=food.id, amount=Decimal("1"),
                                         type="expense", date=datetime(2025, 2, 1)))
    found = store.find_transactions_by_user_and_date_range(user.id, datetime(2025, 1, 1), datetime(2025, 2, 1))
    assert [t.date for t in found] == [datetime(2025, 1, 1)]


def test_list_transactions_filters_and_sorts_newest_first(store, user):
    food = _food(store, user.id)
    salary = store.create_category(Category(user_id=user.id, name="Salary", type="income"))
    for day in (3, 9, 15):
        store.create_transaction(_expense(user.id, food.id, day=day))
    store.create_transaction(Transaction(user_id=user.id, category_id=salary.id, amount=Decimal("1"),
                                         type="income", date=datetime(2025, 1, 10)))

    expenses = store.list_transactions(user.id, entry_type="expense")
    assert [t.date.day for t in expenses] == [15, 9, 3]

    windowed = store.list_transactions(user.id, start=datetime(2025, 1, 9), end=datetime(2025, 1, 15))
    assert [t.date.day for t in windowed] == [15, 10, 9]

    by_category = store.list_transactions(user.id, category_id=salary.id)
    assert [t.category_id for t in by_category] == [salary.id]


def test_aware_dates_are_stored_as_naive_utc(store, user):
    food = _food(store, user.id)
    local = datetime(2025, 1, 1, 1, 0, tzinfo=timezone(timedelta(hours=2)))
    created = store.create_transaction(Transaction(user_id=user.id, category_id=food.id, amount=Decimal("1"),
                                                   type="expense", date=local))
    assert store.find_transaction(user.id, created.id).date == datetime(2024, 12, 31, 23, 0)


def test_malformed_id_is_a_validation_error(store, user):
    with pytest.raises(ValidationError, match="Invalid ID format"):
        store.find_category(user.id, "not-an-id")


def test_duplicate_email_is_rejected(store, user):
    with pytest.raises(ValidationError):
        store.create_user(User(name="Again", email=user.email))


def test_budget_spent_is_updated_independently(store, user):
    budget = store.create_budget(Budget(user_id=user.id, name="Jan", start_date=datetime(2025, 1, 1),
                                        limit=Decimal("300")))
    assert budget.spent == Decimal("0")
    updated = store.update_budget(user.id, budget.id, {"spent": Decimal("75.5")})
    assert store.find_budget(user.id, budget.id).spent == Decimal("75.5")
    assert updated.limit == Decimal("300")


def test_category_type_is_locked_while_transactions_reference_it(store, user):
    food = _food(store, user.id)
    store.create_transaction(_expense(user.id, food.id))

    with pytest.raises(ValidationError, match="Category type cannot change"):
        store.update_category(user.id, food.id, {"type": "income"})
    assert store.find_category(user.id, food.id).type == "expense"


def test_category_type_can_change_without_transactions(store, user):
    food = _food(store, user.id)
    updated = store.update_category(user.id, food.id, {"type": "income"})
    assert updated.type == "income"


def test_amount_beyond_decimal128_precision_is_rejected(store, user):
    food = _food(store, user.id)
    with pytest.raises(ValidationError, match="cannot be stored exactly"):
        store.create_transaction(_expense(user.id, food.id, amount="0.12345678901234567890123456789012345678"))
    assert store.list_transactions(user.id) == []
