"""
Rollup calculator

Category totals are the signed sum of their transactions (income adds,
expense subtracts). Budget totals are the budget's own ``spent`` plus the
totals of its linked categories. Both are pure functions of the records the
caller hands in; ``category_rollup`` and ``budget_rollup`` do the fetching.

A relation the caller never fetched must be passed as ``UNLOADED``, which
refuses to aggregate. An empty list means the relation was loaded and is
empty.
"""

from decimal import Decimal
from typing import Iterable, Sequence, Union

from database import RecordStore
from errors import UnloadedRelationError
from schemas import Budget, BudgetRollup, Category, CategoryRollup, Transaction


class _Unloaded:
    def __repr__(self):
        return "UNLOADED"


UNLOADED = _Unloaded()


def compute_category_total(
    category: Category, transactions: Union[Iterable[Transaction], _Unloaded]
) -> Decimal:
    if transactions is UNLOADED:
        raise UnloadedRelationError(f"Transactions of category {category.name!r} were not loaded")
    total = Decimal("0")
    for transaction in transactions:
        if transaction.type == "expense":
            total -= transaction.amount
        else:
            total += transaction.amount
    return total


def compute_budget_total(
    budget: Budget, categories: Union[Iterable[CategoryRollup], _Unloaded]
) -> Decimal:
    """``spent`` plus every linked category's total.

    This is the value flowing through the budget, not what is left of it;
    remaining is ``budget.limit - total``.
    """
    if categories is UNLOADED:
        raise UnloadedRelationError(f"Categories of budget {budget.name!r} were not loaded")
    total = budget.spent
    for category in categories:
        total += category.total
    return total


def rollup_category(category: Category, transactions: Sequence[Transaction]) -> CategoryRollup:
    total = compute_category_total(category, transactions)
    return CategoryRollup(**category.model_dump(), transactions=list(transactions), total=total)


def category_rollup(store: RecordStore, category: Category) -> CategoryRollup:
    return rollup_category(category, store.find_transactions_by_category(category.id))


def budget_rollup(store: RecordStore, budget: Budget) -> BudgetRollup:
    categories = [category_rollup(store, c) for c in store.find_categories_by_budget(budget.id)]
    return BudgetRollup(
        **budget.model_dump(),
        categories=categories,
        total=compute_budget_total(budget, categories),
    )
