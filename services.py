from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from aggregation import (
    budget_status,
    category_summary,
    daily_summary,
    goal_progress,
    investment_return,
    monthly_summary,
    portfolio_summary,
    transaction_totals,
)
from csv_utils import MAX_CENTS, export_transactions
from models import (
    Category,
    Investment,
    Profile,
    SavingsGoal,
    Transaction,
    TransactionType,
)
from periods import Period, month_end, month_start
from recurrence import RecurringEngine, local_today
from schemas import (
    BudgetIn,
    CategoryIn,
    ContributionIn,
    GoalIn,
    InvestmentIn,
    ProfileIn,
    TransactionIn,
)

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = (
    (TransactionType.expense, "Food & Dining", "#14b8a6", "Utensils"),
    (TransactionType.expense, "Transportation", "#8b5cf6", "Car"),
    (TransactionType.expense, "Shopping", "#f59e0b", "ShoppingBag"),
    (TransactionType.expense, "Bills & Utilities", "#ef4444", "Receipt"),
    (TransactionType.expense, "Entertainment", "#ec4899", "Film"),
    (TransactionType.expense, "Housing", "#64748b", "Home"),
    (TransactionType.income, "Salary", "#22c55e", "Briefcase"),
    (TransactionType.income, "Investments", "#3b82f6", "TrendingUp"),
    (TransactionType.income, "Gifts", "#a855f7", "Gift"),
    (TransactionType.income, "Other Income", "#f97316", "PlusCircle"),
)

DASHBOARD_MONTHS = 6
RECENT_LIMIT = 5


class EmptyExportError(ValueError):
    def __init__(self) -> None:
        super().__init__("No transactions to export")


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    query: Optional[str] = None

    @property
    def active(self) -> bool:
        return bool(self.type or self.category_id or self.query)


class ProfileService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self) -> Profile:
        profile = self.session.get(Profile, self.user_id)
        if not profile:
            raise ValueError("Profile not found")
        return profile

    def update(self, data: ProfileIn) -> Profile:
        profile = self.get()
        profile.full_name = data.full_name
        profile.currency = data.currency
        self.session.commit()
        return profile


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(
        self, transaction_type: Optional[TransactionType] = None
    ) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, func.lower(Category.name))
        )
        if transaction_type:
            stmt = stmt.where(Category.type == transaction_type)
        return list(self.session.scalars(stmt))

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise ValueError("Category not found")
        return category

    def _check_unique(
        self, name: str, category_type: TransactionType, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            Category.type == category_type,
            func.lower(Category.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValueError("Category with this name already exists")

    def create(self, data: CategoryIn) -> Category:
        self._check_unique(data.name, data.type)
        if data.budget_cents and data.type != TransactionType.expense:
            raise ValueError("Budgets can only be set for expense categories")
        category = Category(
            user_id=self.user_id,
            name=data.name,
            type=data.type,
            color=data.color,
            icon=data.icon,
            budget_cents=data.budget_cents or None,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        logger.info(f"category_created: user_id={self.user_id} id={category.id}")
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        self._check_unique(data.name, data.type, exclude_id=category.id)
        if data.type != category.type and self._transaction_count(category.id):
            raise ValueError("Category type cannot change while it has transactions")
        if data.budget_cents and data.type != TransactionType.expense:
            raise ValueError("Budgets can only be set for expense categories")
        category.name = data.name
        category.type = data.type
        category.color = data.color
        category.icon = data.icon
        category.budget_cents = data.budget_cents or None
        self.session.commit()
        return category

    def _transaction_count(self, category_id: int) -> int:
        return int(
            self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.category_id == category_id
                )
            ).scalar_one()
            or 0
        )

    def delete(self, category_id: int) -> int:
        """Delete the category together with its transactions; returns how many went."""
        category = self.get(category_id)
        removed = self._transaction_count(category.id)
        self.session.delete(category)
        self.session.commit()
        logger.info(
            f"category_deleted: user_id={self.user_id} id={category_id} "
            f"transactions_removed={removed}"
        )
        return removed

    def set_budget(self, data: BudgetIn) -> Category:
        category = self.get(data.category_id)
        if category.type != TransactionType.expense:
            raise ValueError("Budgets can only be set for expense categories")
        category.budget_cents = data.budget_cents
        self.session.commit()
        return category

    def clear_budget(self, category_id: int) -> Category:
        category = self.get(category_id)
        category.budget_cents = None
        self.session.commit()
        return category

    def ensure_defaults(self) -> int:
        has_any = self.session.scalar(
            select(func.count(Category.id)).where(Category.user_id == self.user_id)
        )
        if has_any:
            return 0
        for category_type, name, color, icon in DEFAULT_CATEGORIES:
            self.session.add(
                Category(
                    user_id=self.user_id,
                    name=name,
                    type=category_type,
                    color=color,
                    icon=icon,
                )
            )
        self.session.commit()
        logger.info(
            f"default_categories_created: user_id={self.user_id} "
            f"count={len(DEFAULT_CATEGORIES)}"
        )
        return len(DEFAULT_CATEGORIES)


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _conditions(
        self, period: Optional[Period], filters: Optional[TransactionFilters]
    ) -> list:
        conditions = [Transaction.user_id == self.user_id]
        if period is not None:
            conditions.append(Transaction.date.between(period.start, period.end))
        if filters:
            if filters.type:
                conditions.append(Transaction.type == filters.type)
            if filters.category_id:
                conditions.append(Transaction.category_id == filters.category_id)
            if filters.query:
                conditions.append(Transaction.description.ilike(f"%{filters.query}%"))
        return conditions

    def _filtered(self, period: Optional[Period], filters: Optional[TransactionFilters]):
        return (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(*self._conditions(period, filters))
        )

    def list(
        self,
        period: Optional[Period] = None,
        filters: Optional[TransactionFilters] = None,
        *,
        page: int = 1,
        per_page: int = 50,
    ) -> tuple[list[Transaction], int]:
        total = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(
                    *self._conditions(period, filters)
                )
            ).scalar_one()
            or 0
        )
        page = max(page, 1)
        rows = self.session.scalars(
            self._filtered(period, filters)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(rows), total

    def all_for_period(
        self,
        period: Optional[Period] = None,
        filters: Optional[TransactionFilters] = None,
    ) -> list[Transaction]:
        stmt = self._filtered(period, filters).order_by(
            Transaction.date.desc(), Transaction.id.desc()
        )
        return list(self.session.scalars(stmt))

    def recent(self, limit: int = RECENT_LIMIT) -> list[Transaction]:
        stmt = (
            self._filtered(None, None)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def has_any(self) -> bool:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.user_id == self.user_id
        )
        return (self.session.execute(stmt).scalar_one() or 0) > 0

    def get(self, transaction_id: int) -> Transaction:
        stmt = self._filtered(None, None).where(Transaction.id == transaction_id)
        txn = self.session.scalar(stmt)
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def _check_category(self, category_id: int, transaction_type: TransactionType) -> None:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise ValueError("Category not found")
        if category.type != transaction_type:
            raise ValueError("Category type mismatch")

    def _post_due(self, txn: Transaction) -> None:
        if not txn.is_recurring:
            return
        posted = RecurringEngine(self.session).catch_up(txn, local_today())
        if posted:
            self.session.commit()
            logger.info(f"recurring_posted: transaction_id={txn.id} count={posted}")

    def create(self, data: TransactionIn) -> Transaction:
        self._check_category(data.category_id, data.type)
        txn = Transaction(
            user_id=self.user_id,
            date=data.date,
            type=data.type,
            amount_cents=data.amount_cents,
            description=data.description,
            category_id=data.category_id,
            is_recurring=data.is_recurring,
            recurring_interval=data.recurring_interval,
            recurring_end_date=data.recurring_end_date,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        self._post_due(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        self._check_category(data.category_id, data.type)
        txn.date = data.date
        txn.type = data.type
        txn.amount_cents = data.amount_cents
        txn.description = data.description
        txn.category_id = data.category_id
        txn.is_recurring = data.is_recurring
        txn.recurring_interval = data.recurring_interval
        txn.recurring_end_date = data.recurring_end_date
        self.session.commit()
        self._post_due(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()


class GoalService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[SavingsGoal]:
        stmt = (
            select(SavingsGoal)
            .where(SavingsGoal.user_id == self.user_id)
            .order_by(SavingsGoal.target_date.is_(None), SavingsGoal.target_date, SavingsGoal.id)
        )
        return list(self.session.scalars(stmt))

    def get(self, goal_id: int) -> SavingsGoal:
        goal = self.session.get(SavingsGoal, goal_id)
        if not goal or goal.user_id != self.user_id:
            raise ValueError("Goal not found")
        return goal

    def create(self, data: GoalIn) -> SavingsGoal:
        goal = SavingsGoal(user_id=self.user_id, **data.model_dump())
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def update(self, goal_id: int, data: GoalIn) -> SavingsGoal:
        goal = self.get(goal_id)
        for field, value in data.model_dump().items():
            setattr(goal, field, value)
        self.session.commit()
        return goal

    def contribute(self, goal_id: int, data: ContributionIn) -> SavingsGoal:
        goal = self.get(goal_id)
        if goal.current_cents + data.amount_cents > MAX_CENTS:
            raise ValueError("Amount is too large")
        goal.current_cents += data.amount_cents
        self.session.commit()
        logger.info(
            f"goal_contribution: goal_id={goal.id} amount_cents={data.amount_cents}"
        )
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()

    @staticmethod
    def progress(goal: SavingsGoal) -> int:
        return goal_progress(goal.current_cents, goal.target_cents)


class InvestmentService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Investment]:
        stmt = (
            select(Investment)
            .where(Investment.user_id == self.user_id)
            .order_by(Investment.purchase_date.desc(), Investment.id.desc())
        )
        return list(self.session.scalars(stmt))

    def get(self, investment_id: int) -> Investment:
        investment = self.session.get(Investment, investment_id)
        if not investment or investment.user_id != self.user_id:
            raise ValueError("Investment not found")
        return investment

    def create(self, data: InvestmentIn) -> Investment:
        investment = Investment(user_id=self.user_id, **data.model_dump())
        self.session.add(investment)
        self.session.commit()
        self.session.refresh(investment)
        return investment

    def update(self, investment_id: int, data: InvestmentIn) -> Investment:
        investment = self.get(investment_id)
        for field, value in data.model_dump().items():
            setattr(investment, field, value)
        self.session.commit()
        return investment

    def delete(self, investment_id: int) -> None:
        investment = self.get(investment_id)
        self.session.delete(investment)
        self.session.commit()

    def overview(self) -> dict[str, object]:
        investments = self.list_all()
        rows = [
            (item, investment_return(item.invested_cents, item.current_value_cents))
            for item in investments
        ]
        return {"rows": rows, "summary": portfolio_summary(investments)}


class CSVService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def export(self, transactions: list[Transaction]) -> str:
        if not transactions:
            raise EmptyExportError()
        logger.info(f"csv_export: user_id={self.user_id} rows={len(transactions)}")
        return export_transactions(transactions)


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.categories = CategoryService(session, user_id)
        self.transactions = TransactionService(session, user_id)

    def current_month(self, today: Optional[date] = None) -> Period:
        today = today or local_today()
        return Period("this_month", month_start(today), month_end(today))

    def statuses(self, today: Optional[date] = None) -> list[dict[str, object]]:
        period = self.current_month(today)
        expenses = self.transactions.all_for_period(
            period, TransactionFilters(type=TransactionType.expense)
        )
        return [
            {"category": category, "status": budget_status(category, expenses)}
            for category in self.categories.list_all(TransactionType.expense)
        ]


class DashboardService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def overview(self, today: Optional[date] = None) -> dict[str, object]:
        today = today or local_today()
        categories = CategoryService(self.session, self.user_id)
        categories.ensure_defaults()
        txn_service = TransactionService(self.session, self.user_id)
        transactions = txn_service.all_for_period()
        goals = GoalService(self.session, self.user_id).list_all()
        totals = transaction_totals(transactions)
        return {
            "totals": totals,
            "savings_total_cents": sum(g.current_cents for g in goals),
            "monthly": monthly_summary(transactions, DASHBOARD_MONTHS, today=today),
            "expense_categories": category_summary(
                transactions, categories.list_all(), TransactionType.expense
            ),
            "recent": transactions[:RECENT_LIMIT],
            "goals": [(goal, GoalService.progress(goal)) for goal in goals[:3]],
        }


class ReportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.txn_service = TransactionService(session, user_id)
        self.category_service = CategoryService(session, user_id)

    def gather(
        self, period: Period, filters: Optional[TransactionFilters] = None
    ) -> dict[str, object]:
        transactions = self.txn_service.all_for_period(period, filters)
        categories = self.category_service.list_all()
        return {
            "period": period,
            "filters": filters or TransactionFilters(),
            "transactions": transactions,
            "totals": transaction_totals(transactions),
            "daily": daily_summary(transactions, period.start, period.end),
            "expense_categories": category_summary(
                transactions, categories, TransactionType.expense
            ),
            "income_categories": category_summary(
                transactions, categories, TransactionType.income
            ),
        }
