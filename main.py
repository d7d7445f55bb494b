import logging
from dataclasses import asdict
from typing import Iterator, Optional
from urllib.parse import urlencode

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError
from sqlalchemy.orm import Session

from aggregation import category_summary, monthly_summary
from auth import SESSION_COOKIE, AuthError, AuthStateNotifier, SessionHolder
from config import get_settings
from csrf import generate_csrf_token, validate_csrf_token
from csv_utils import format_cents
from database import get_db
from models import InvestmentType, RecurringInterval, RiskLevel, TransactionType
from notifications import Notice, clear_notices, consume_notices, flash
from periods import PERIOD_CHOICES, Period, resolve_period
from recurrence import local_today
from scheduler import SchedulerManager
from schemas import (
    BudgetIn,
    CategoryIn,
    ContributionIn,
    GoalIn,
    InvestmentIn,
    ProfileIn,
    SignInIn,
    SignUpIn,
    TransactionIn,
    field_errors,
)
from services import (
    BudgetService,
    CSVService,
    CategoryService,
    DashboardService,
    EmptyExportError,
    GoalService,
    InvestmentService,
    ProfileService,
    ReportService,
    TransactionFilters,
    TransactionService,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="FinTrack")
app.mount("/static", StaticFiles(directory="static"), name="static")
templates = Jinja2Templates(directory="templates")

NAV_ITEMS = (
    ("dashboard", "Dashboard", "/dashboard"),
    ("transactions", "Transactions", "/transactions"),
    ("categories", "Categories", "/categories"),
    ("budget", "Budget", "/budget"),
    ("goals", "Goals", "/goals"),
    ("investments", "Investments", "/investments"),
    ("reports", "Reports", "/reports"),
)


def format_money(cents: Optional[int], currency: str = "$") -> str:
    if cents is None:
        return ""
    sign = "-" if cents < 0 else ""
    return f"{sign}{currency}{abs(cents) / 100:,.2f}"


templates.env.filters["money"] = format_money
templates.env.filters["plain_amount"] = format_cents
templates.env.globals["TransactionType"] = TransactionType
templates.env.globals["RecurringInterval"] = RecurringInterval
templates.env.globals["InvestmentType"] = InvestmentType
templates.env.globals["RiskLevel"] = RiskLevel
templates.env.globals["NAV_ITEMS"] = NAV_ITEMS
templates.env.globals["PERIOD_CHOICES"] = PERIOD_CHOICES

scheduler_manager = SchedulerManager()
auth_notifier = AuthStateNotifier()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


class LoginRequired(Exception):
    pass


@app.exception_handler(LoginRequired)
async def login_required_handler(request: Request, exc: LoginRequired):
    return RedirectResponse(url="/login", status_code=303)


def get_auth(request: Request, db: Session = Depends(get_db)) -> Iterator[SessionHolder]:
    holder = SessionHolder(db, auth_notifier)
    holder.load(request.cookies.get(SESSION_COOKIE))
    try:
        yield holder
    finally:
        holder.close()


def require_user(auth: SessionHolder = Depends(get_auth)) -> SessionHolder:
    if not auth.is_authenticated:
        raise LoginRequired()
    return auth


def render(
    request: Request,
    template: str,
    context: dict[str, object],
    *,
    auth: Optional[SessionHolder] = None,
    status_code: int = 200,
) -> HTMLResponse:
    profile = auth.profile if auth else None
    ctx: dict[str, object] = {
        "profile": profile,
        "currency": profile.currency if profile else get_settings().default_currency,
        "csrf_token": generate_csrf_token(auth.user_id if auth else None),
        "notices": consume_notices(request),
        "errors": {},
        "values": {},
    }
    ctx.update(context)
    response = templates.TemplateResponse(
        request, template, ctx, status_code=status_code
    )
    clear_notices(request, response)
    return response


def redirect(url: str, request: Request, notice: Optional[Notice] = None) -> RedirectResponse:
    response = RedirectResponse(url=url, status_code=303)
    if notice is not None:
        flash(request, response, notice)
    return response


def failed(url: str, request: Request, title: str, exc: Exception) -> RedirectResponse:
    logger.warning(f"request_failed: path={request.url.path} error={exc}")
    return redirect(url, request, Notice.error(title, str(exc)))


async def read_form(request: Request, auth: SessionHolder) -> dict[str, str]:
    form = await request.form()
    if not validate_csrf_token(form.get("csrf_token"), auth.user_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    return {
        key: value
        for key, value in form.items()
        if key != "csrf_token" and isinstance(value, str)
    }


def period_from_request(request: Request, default: str = "this_month") -> Period:
    params = request.query_params
    try:
        return resolve_period(
            params.get("period"),
            params.get("start"),
            params.get("end"),
            today=local_today(),
            default=default,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def filters_from_request(request: Request) -> TransactionFilters:
    params = request.query_params
    txn_type = None
    if params.get("type"):
        try:
            txn_type = TransactionType(params["type"])
        except ValueError:
            txn_type = None
    category_id = None
    if params.get("category"):
        try:
            category_id = int(params["category"])
        except ValueError:
            category_id = None
    query = (params.get("q") or "").strip() or None
    return TransactionFilters(type=txn_type, category_id=category_id, query=query)


def query_string(period: Period, filters: TransactionFilters) -> str:
    params: dict[str, str] = {"period": period.slug}
    if period.slug == "custom":
        params["start"] = period.start.isoformat()
        params["end"] = period.end.isoformat()
    if filters.type:
        params["type"] = filters.type.value
    if filters.category_id:
        params["category"] = str(filters.category_id)
    if filters.query:
        params["q"] = filters.query
    return urlencode(params)


def csv_response(csv_text: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# --- auth -----------------------------------------------------------------


def _set_session_cookie(response: RedirectResponse, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=settings.session_max_age_hours * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
    )


@app.get("/")
def index(auth: SessionHolder = Depends(get_auth)):
    return RedirectResponse(
        url="/dashboard" if auth.is_authenticated else "/login", status_code=303
    )


@app.get("/login", response_class=HTMLResponse)
def login_page(request: Request, auth: SessionHolder = Depends(get_auth)):
    if auth.is_authenticated:
        return RedirectResponse(url="/dashboard", status_code=303)
    mode = "register" if request.query_params.get("mode") == "register" else "login"
    return render(request, "login.html", {"mode": mode}, auth=auth)


@app.post("/login")
async def login(request: Request, auth: SessionHolder = Depends(get_auth)):
    form = await read_form(request, auth)
    try:
        data = SignInIn(**form)
    except ValidationError as exc:
        return render(
            request,
            "login.html",
            {"mode": "login", "errors": field_errors(exc), "values": form},
            auth=auth,
            status_code=400,
        )
    try:
        session = auth.sign_in(data)
    except AuthError as exc:
        return failed("/login", request, "Error", exc)
    response = redirect("/dashboard", request, Notice("Logged in successfully"))
    _set_session_cookie(response, session.access_token)
    return response


@app.post("/register")
async def register(
    request: Request,
    auth: SessionHolder = Depends(get_auth),
    db: Session = Depends(get_db),
):
    form = await read_form(request, auth)
    try:
        data = SignUpIn(**form)
    except ValidationError as exc:
        return render(
            request,
            "login.html",
            {"mode": "register", "errors": field_errors(exc), "values": form},
            auth=auth,
            status_code=400,
        )
    try:
        session = auth.sign_up(data)
    except AuthError as exc:
        return failed("/login?mode=register", request, "Error", exc)
    CategoryService(db, session.user_id).ensure_defaults()
    response = redirect(
        "/dashboard", request, Notice("Account created successfully")
    )
    _set_session_cookie(response, session.access_token)
    return response


@app.post("/logout")
async def logout(request: Request, auth: SessionHolder = Depends(require_user)):
    await read_form(request, auth)
    notice = auth.sign_out()
    response = redirect("/login", request, notice)
    response.delete_cookie(SESSION_COOKIE)
    return response


@app.get("/profile", response_class=HTMLResponse)
def profile_page(request: Request, auth: SessionHolder = Depends(require_user)):
    profile = auth.profile
    values = {"full_name": profile.full_name or "", "currency": profile.currency}
    return render(request, "profile.html", {"values": values}, auth=auth)


@app.post("/profile")
async def update_profile(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    form = await read_form(request, auth)
    try:
        data = ProfileIn(**form)
    except ValidationError as exc:
        return render(
            request,
            "profile.html",
            {"errors": field_errors(exc), "values": form},
            auth=auth,
            status_code=400,
        )
    try:
        ProfileService(db, auth.user_id).update(data)
    except ValueError as exc:
        return failed("/profile", request, "Error updating profile", exc)
    return redirect("/profile", request, Notice("Profile updated"))


# --- dashboard --------------------------------------------------------------


@app.get("/dashboard", response_class=HTMLResponse)
def dashboard(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    overview = DashboardService(db, auth.user_id).overview()
    monthly = overview["monthly"]
    peak = max(
        [max(m.income_cents, m.expense_cents) for m in monthly] + [1]
    )
    return render(
        request,
        "dashboard.html",
        {"active": "dashboard", "chart_peak": peak, **overview},
        auth=auth,
    )


# --- transactions -----------------------------------------------------------


def _transaction_values(txn) -> dict[str, object]:
    return {
        "type": txn.type.value,
        "amount_cents": format_cents(txn.amount_cents),
        "description": txn.description,
        "date": txn.date.isoformat(),
        "category_id": txn.category_id,
        "is_recurring": txn.is_recurring,
        "recurring_interval": (
            txn.recurring_interval.value if txn.recurring_interval else ""
        ),
        "recurring_end_date": (
            txn.recurring_end_date.isoformat() if txn.recurring_end_date else ""
        ),
    }


def _transaction_form(
    request: Request,
    auth: SessionHolder,
    db: Session,
    *,
    transaction_id: Optional[int] = None,
    values: Optional[dict] = None,
    errors: Optional[dict] = None,
    status_code: int = 200,
) -> HTMLResponse:
    categories = CategoryService(db, auth.user_id).list_all()
    return render(
        request,
        "transaction_form.html",
        {
            "active": "transactions",
            "transaction_id": transaction_id,
            "categories": categories,
            "values": values or {},
            "errors": errors or {},
        },
        auth=auth,
        status_code=status_code,
    )


@app.get("/transactions", response_class=HTMLResponse)
def transactions_page(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    period = period_from_request(request, default="all")
    filters = filters_from_request(request)
    try:
        page = max(int(request.query_params.get("page", "1")), 1)
    except ValueError:
        page = 1
    per_page = 25
    items, total = TransactionService(db, auth.user_id).list(
        period, filters, page=page, per_page=per_page
    )
    return render(
        request,
        "transactions.html",
        {
            "active": "transactions",
            "period": period,
            "filters": filters,
            "transactions": items,
            "total": total,
            "page": page,
            "has_more": page * per_page < total,
            "categories": CategoryService(db, auth.user_id).list_all(),
            "query": query_string(period, filters),
        },
        auth=auth,
    )


@app.get("/transactions/new", response_class=HTMLResponse)
def new_transaction(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    txn_type = request.query_params.get("type", TransactionType.expense.value)
    values = {"type": txn_type, "date": local_today().isoformat()}
    return _transaction_form(request, auth, db, values=values)


@app.post("/transactions")
async def create_transaction(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    form = await read_form(request, auth)
    try:
        data = TransactionIn(**form)
    except ValidationError as exc:
        return _transaction_form(
            request, auth, db, values=form, errors=field_errors(exc), status_code=400
        )
    try:
        TransactionService(db, auth.user_id).create(data)
    except ValueError as exc:
        return failed("/transactions/new", request, "Error adding transaction", exc)
    return redirect("/transactions", request, Notice("Transaction added"))


@app.get("/transactions/export.csv")
def export_transactions_endpoint(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    period = period_from_request(request, default="all")
    filters = filters_from_request(request)
    transactions = TransactionService(db, auth.user_id).all_for_period(period, filters)
    try:
        csv_text = CSVService(db, auth.user_id).export(transactions)
    except EmptyExportError as exc:
        return redirect(
            f"/transactions?{query_string(period, filters)}", request, Notice(str(exc))
        )
    return csv_response(csv_text, f"transactions-{local_today().isoformat()}.csv")


@app.get("/transactions/{transaction_id}/edit", response_class=HTMLResponse)
def edit_transaction(
    transaction_id: int,
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, auth.user_id).get(transaction_id)
    except ValueError as exc:
        return failed("/transactions", request, "Error fetching data", exc)
    return _transaction_form(
        request,
        auth,
        db,
        transaction_id=txn.id,
        values=_transaction_values(txn),
    )


@app.post("/transactions/{transaction_id}/edit")
async def update_transaction(
    transaction_id: int,
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    form = await read_form(request, auth)
    try:
        data = TransactionIn(**form)
    except ValidationError as exc:
        return _transaction_form(
            request,
            auth,
            db,
            transaction_id=transaction_id,
            values=form,
            errors=field_errors(exc),
            status_code=400,
        )
    try:
        TransactionService(db, auth.user_id).update(transaction_id, data)
    except ValueError as exc:
        return failed("/transactions", request, "Error updating transaction", exc)
    return redirect("/transactions", request, Notice("Transaction updated"))


@app.post("/transactions/{transaction_id}/delete")
async def delete_transaction(
    transaction_id: int,
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    await read_form(request, auth)
    try:
        TransactionService(db, auth.user_id).delete(transaction_id)
    except ValueError as exc:
        return failed("/transactions", request, "Error deleting transaction", exc)
    return redirect("/transactions", request, Notice("Transaction deleted"))


# --- categories -------------------------------------------------------------


def _category_form(
    request: Request,
    auth: SessionHolder,
    *,
    category_id: Optional[int] = None,
    values: Optional[dict] = None,
    errors: Optional[dict] = None,
    status_code: int = 200,
) -> HTMLResponse:
    return render(
        request,
        "category_form.html",
        {
            "active": "categories",
            "category_id": category_id,
            "values": values or {},
            "errors": errors or {},
        },
        auth=auth,
        status_code=status_code,
    )


@app.get("/categories", response_class=HTMLResponse)
def categories_page(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    service = CategoryService(db, auth.user_id)
    service.ensure_defaults()
    categories = service.list_all()
    return render(
        request,
        "categories.html",
        {
            "active": "categories",
            "expense_categories": [
                c for c in categories if c.type == TransactionType.expense
            ],
            "income_categories": [
                c for c in categories if c.type == TransactionType.income
            ],
        },
        auth=auth,
    )


@app.get("/categories/new", response_class=HTMLResponse)
def new_category(request: Request, auth: SessionHolder = Depends(require_user)):
    txn_type = request.query_params.get("type", TransactionType.expense.value)
    return _category_form(
        request, auth, values={"type": txn_type, "color": "#14b8a6", "icon": "Tag"}
    )


@app.post("/categories")
async def create_category(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    form = await read_form(request, auth)
    try:
        data = CategoryIn(**form)
    except ValidationError as exc:
        return _category_form(
            request, auth, values=form, errors=field_errors(exc), status_code=400
        )
    try:
        CategoryService(db, auth.user_id).create(data)
    except ValueError as exc:
        return failed("/categories", request, "Error saving category", exc)
    return redirect("/categories", request, Notice("Category created"))


@app.get("/categories/{category_id}/edit", response_class=HTMLResponse)
def edit_category(
    category_id: int,
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, auth.user_id).get(category_id)
    except ValueError as exc:
        return failed("/categories", request, "Error fetching categories", exc)
    values = {
        "name": category.name,
        "type": category.type.value,
        "color": category.color,
        "icon": category.icon,
        "budget_cents": (
            format_cents(category.budget_cents) if category.budget_cents else ""
        ),
    }
    return _category_form(request, auth, category_id=category.id, values=values)


@app.post("/categories/{category_id}/edit")
async def update_category(
    category_id: int,
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    form = await read_form(request, auth)
    try:
        data = CategoryIn(**form)
    except ValidationError as exc:
        return _category_form(
            request,
            auth,
            category_id=category_id,
            values=form,
            errors=field_errors(exc),
            status_code=400,
        )
    try:
        CategoryService(db, auth.user_id).update(category_id, data)
    except ValueError as exc:
        return failed("/categories", request, "Error saving category", exc)
    return redirect("/categories", request, Notice("Category updated"))


@app.post("/categories/{category_id}/delete")
async def delete_category(
    category_id: int,
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    await read_form(request, auth)
    try:
        CategoryService(db, auth.user_id).delete(category_id)
    except ValueError as exc:
        return failed("/categories", request, "Error deleting category", exc)
    return redirect("/categories", request, Notice("Category deleted"))


# --- budget -----------------------------------------------------------------


def _budget_page(
    request: Request,
    auth: SessionHolder,
    db: Session,
    *,
    values: Optional[dict] = None,
    errors: Optional[dict] = None,
    status_code: int = 200,
) -> HTMLResponse:
    rows = BudgetService(db, auth.user_id).statuses()
    return render(
        request,
        "budget.html",
        {
            "active": "budget",
            "rows": rows,
            "values": values or {},
            "errors": errors or {},
        },
        auth=auth,
        status_code=status_code,
    )


@app.get("/budget", response_class=HTMLResponse)
def budget_page(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    return _budget_page(request, auth, db)


@app.post("/budget")
async def set_budget(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    form = await read_form(request, auth)
    try:
        data = BudgetIn(**form)
    except ValidationError as exc:
        return _budget_page(
            request, auth, db, values=form, errors=field_errors(exc), status_code=400
        )
    try:
        CategoryService(db, auth.user_id).set_budget(data)
    except ValueError as exc:
        return failed("/budget", request, "Error updating budget", exc)
    return redirect("/budget", request, Notice("Budget updated"))


@app.post("/budget/{category_id}/clear")
async def clear_budget(
    category_id: int,
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    await read_form(request, auth)
    try:
        CategoryService(db, auth.user_id).clear_budget(category_id)
    except ValueError as exc:
        return failed("/budget", request, "Error updating budget", exc)
    return redirect("/budget", request, Notice("Budget updated"))


# --- goals ------------------------------------------------------------------


def _goal_form(
    request: Request,
    auth: SessionHolder,
    *,
    goal_id: Optional[int] = None,
    values: Optional[dict] = None,
    errors: Optional[dict] = None,
    status_code: int = 200,
) -> HTMLResponse:
    return render(
        request,
        "goal_form.html",
        {
            "active": "goals",
            "goal_id": goal_id,
            "values": values or {},
            "errors": errors or {},
        },
        auth=auth,
        status_code=status_code,
    )


@app.get("/goals", response_class=HTMLResponse)
def goals_page(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    goals = GoalService(db, auth.user_id).list_all()
    return render(
        request,
        "goals.html",
        {
            "active": "goals",
            "goals": [(goal, GoalService.progress(goal)) for goal in goals],
            "today": local_today(),
        },
        auth=auth,
    )


@app.get("/goals/new", response_class=HTMLResponse)
def new_goal(request: Request, auth: SessionHolder = Depends(require_user)):
    return _goal_form(
        request,
        auth,
        values={"color": "#14b8a6", "icon": "PiggyBank", "current_cents": "0"},
    )


@app.post("/goals")
async def create_goal(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    form = await read_form(request, auth)
    try:
        data = GoalIn(**form)
    except ValidationError as exc:
        return _goal_form(
            request, auth, values=form, errors=field_errors(exc), status_code=400
        )
    try:
        GoalService(db, auth.user_id).create(data)
    except ValueError as exc:
        return failed("/goals", request, "Error saving goal", exc)
    return redirect("/goals", request, Notice("Goal created"))


@app.get("/goals/{goal_id}/edit", response_class=HTMLResponse)
def edit_goal(
    goal_id: int,
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    try:
        goal = GoalService(db, auth.user_id).get(goal_id)
    except ValueError as exc:
        return failed("/goals", request, "Error fetching goals", exc)
    values = {
        "name": goal.name,
        "target_cents": format_cents(goal.target_cents),
        "current_cents": format_cents(goal.current_cents),
        "target_date": goal.target_date.isoformat() if goal.target_date else "",
        "color": goal.color,
        "icon": goal.icon,
    }
    return _goal_form(request, auth, goal_id=goal.id, values=values)


@app.post("/goals/{goal_id}/edit")
async def update_goal(
    goal_id: int,
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    form = await read_form(request, auth)
    try:
        data = GoalIn(**form)
    except ValidationError as exc:
        return _goal_form(
            request,
            auth,
            goal_id=goal_id,
            values=form,
            errors=field_errors(exc),
            status_code=400,
        )
    try:
        GoalService(db, auth.user_id).update(goal_id, data)
    except ValueError as exc:
        return failed("/goals", request, "Error saving goal", exc)
    return redirect("/goals", request, Notice("Goal updated"))


@app.post("/goals/{goal_id}/contribute")
async def contribute_to_goal(
    goal_id: int,
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    form = await read_form(request, auth)
    try:
        data = ContributionIn(**form)
    except ValidationError as exc:
        message = "; ".join(field_errors(exc).values())
        return failed("/goals", request, "Error adding contribution", ValueError(message))
    try:
        GoalService(db, auth.user_id).contribute(goal_id, data)
    except ValueError as exc:
        return failed("/goals", request, "Error adding contribution", exc)
    return redirect("/goals", request, Notice("Contribution added"))


@app.post("/goals/{goal_id}/delete")
async def delete_goal(
    goal_id: int,
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    await read_form(request, auth)
    try:
        GoalService(db, auth.user_id).delete(goal_id)
    except ValueError as exc:
        return failed("/goals", request, "Error deleting goal", exc)
    return redirect("/goals", request, Notice("Goal deleted"))


# --- investments ------------------------------------------------------------


def _investment_form(
    request: Request,
    auth: SessionHolder,
    *,
    investment_id: Optional[int] = None,
    values: Optional[dict] = None,
    errors: Optional[dict] = None,
    status_code: int = 200,
) -> HTMLResponse:
    return render(
        request,
        "investment_form.html",
        {
            "active": "investments",
            "investment_id": investment_id,
            "values": values or {},
            "errors": errors or {},
        },
        auth=auth,
        status_code=status_code,
    )


@app.get("/investments", response_class=HTMLResponse)
def investments_page(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    overview = InvestmentService(db, auth.user_id).overview()
    return render(
        request, "investments.html", {"active": "investments", **overview}, auth=auth
    )


@app.get("/investments/new", response_class=HTMLResponse)
def new_investment(request: Request, auth: SessionHolder = Depends(require_user)):
    values = {
        "type": InvestmentType.stocks.value,
        "risk_level": RiskLevel.medium.value,
        "purchase_date": local_today().isoformat(),
    }
    return _investment_form(request, auth, values=values)


@app.post("/investments")
async def create_investment(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    form = await read_form(request, auth)
    try:
        data = InvestmentIn(**form)
    except ValidationError as exc:
        return _investment_form(
            request, auth, values=form, errors=field_errors(exc), status_code=400
        )
    try:
        InvestmentService(db, auth.user_id).create(data)
    except ValueError as exc:
        return failed("/investments", request, "Error saving investment", exc)
    return redirect("/investments", request, Notice("Investment added"))


@app.get("/investments/{investment_id}/edit", response_class=HTMLResponse)
def edit_investment(
    investment_id: int,
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    try:
        item = InvestmentService(db, auth.user_id).get(investment_id)
    except ValueError as exc:
        return failed("/investments", request, "Error fetching investments", exc)
    values = {
        "name": item.name,
        "type": item.type.value,
        "invested_cents": format_cents(item.invested_cents),
        "current_value_cents": format_cents(item.current_value_cents),
        "purchase_date": item.purchase_date.isoformat(),
        "risk_level": item.risk_level.value,
        "notes": item.notes or "",
    }
    return _investment_form(request, auth, investment_id=item.id, values=values)


@app.post("/investments/{investment_id}/edit")
async def update_investment(
    investment_id: int,
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    form = await read_form(request, auth)
    try:
        data = InvestmentIn(**form)
    except ValidationError as exc:
        return _investment_form(
            request,
            auth,
            investment_id=investment_id,
            values=form,
            errors=field_errors(exc),
            status_code=400,
        )
    try:
        InvestmentService(db, auth.user_id).update(investment_id, data)
    except ValueError as exc:
        return failed("/investments", request, "Error saving investment", exc)
    return redirect("/investments", request, Notice("Investment updated"))


@app.post("/investments/{investment_id}/delete")
async def delete_investment(
    investment_id: int,
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    await read_form(request, auth)
    try:
        InvestmentService(db, auth.user_id).delete(investment_id)
    except ValueError as exc:
        return failed("/investments", request, "Error deleting investment", exc)
    return redirect("/investments", request, Notice("Investment deleted"))


# --- reports ----------------------------------------------------------------


@app.get("/reports", response_class=HTMLResponse)
def reports_page(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    period = period_from_request(request, default="recent")
    filters = filters_from_request(request)
    report = ReportService(db, auth.user_id).gather(period, filters)
    daily = report["daily"]
    peak = max(
        [max(p.income_cents, p.expense_cents) for p in daily] + [1]
    )
    return render(
        request,
        "reports.html",
        {
            "active": "reports",
            "categories": CategoryService(db, auth.user_id).list_all(),
            "query": query_string(period, filters),
            "chart_peak": peak,
            **report,
        },
        auth=auth,
    )


@app.get("/reports/export.csv")
def export_report(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    period = period_from_request(request, default="recent")
    filters = filters_from_request(request)
    transactions = TransactionService(db, auth.user_id).all_for_period(period, filters)
    try:
        csv_text = CSVService(db, auth.user_id).export(transactions)
    except EmptyExportError:
        notice = Notice(
            "No data to export",
            "Apply different filters or select a different date range.",
        )
        return redirect(f"/reports?{query_string(period, filters)}", request, notice)
    filename = f"financial-report-{period.start.isoformat()}-to-{period.end.isoformat()}.csv"
    return csv_response(csv_text, filename)


# --- chart feeds ------------------------------------------------------------


@app.get("/api/monthly-summary")
def api_monthly_summary(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    try:
        months = min(max(int(request.query_params.get("months", "6")), 1), 36)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid months") from exc
    transactions = TransactionService(db, auth.user_id).all_for_period()
    summary = monthly_summary(transactions, months, today=local_today())
    return [asdict(row) for row in summary]


@app.get("/api/category-summary")
def api_category_summary(
    request: Request,
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    period = period_from_request(request, default="all")
    filters = filters_from_request(request)
    transactions = TransactionService(db, auth.user_id).all_for_period(period)
    categories = CategoryService(db, auth.user_id).list_all()
    rows = category_summary(transactions, categories, filters.type)
    return [asdict(row) for row in rows]


@app.get("/api/budget-status")
def api_budget_status(
    auth: SessionHolder = Depends(require_user),
    db: Session = Depends(get_db),
):
    return [
        {
            "category_id": row["category"].id,
            "name": row["category"].name,
            "budget_cents": row["category"].budget_cents,
            "status": asdict(row["status"]) if row["status"] else None,
        }
        for row in BudgetService(db, auth.user_id).statuses()
    ]


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
