import re
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from database import Base, build_engine, get_db
import main
from main import app
from models import Category, Transaction
from recurrence import local_today

CSRF_RE = re.compile(r'name="csrf_token" value="([^"]+)"')


@pytest.fixture()
def db_factory():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield factory
    app.dependency_overrides.clear()
    engine.dispose()


def _csrf(client: TestClient, path: str) -> str:
    response = client.get(path)
    assert response.status_code == 200
    match = CSRF_RE.search(response.text)
    assert match, f"no csrf token on {path}"
    return match.group(1)


def _register(client: TestClient) -> None:
    token = _csrf(client, "/login?mode=register")
    response = client.post(
        "/register",
        data={
            "csrf_token": token,
            "email": "sam@example.com",
            "password": "hunter22",
            "full_name": "Sam Doe",
        },
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert response.headers["location"] == "/dashboard"


def _food_category_id(db_factory) -> int:
    with db_factory() as db:
        return db.scalar(select(Category.id).where(Category.name == "Food & Dining"))


def test_pages_redirect_to_login_without_session(db_factory) -> None:
    client = TestClient(app)
    for path in ("/dashboard", "/transactions", "/budget", "/reports", "/api/budget-status"):
        response = client.get(path, follow_redirects=False)
        assert response.status_code == 303, path
        assert response.headers["location"] == "/login"


def test_register_then_dashboard_and_sign_out(db_factory) -> None:
    client = TestClient(app)
    _register(client)

    page = client.get("/dashboard")
    assert page.status_code == 200
    assert "Account created successfully" in page.text
    assert "Food &amp; Dining" not in page.text  # no spending yet
    assert "Sam Doe" in page.text

    token = _csrf(client, "/dashboard")
    response = client.post("/logout", data={"csrf_token": token}, follow_redirects=False)
    assert response.status_code == 303
    login = client.get("/login")
    assert "Signed out successfully" in login.text
    assert client.get("/dashboard", follow_redirects=False).status_code == 303


def test_bad_credentials_show_notice(db_factory) -> None:
    client = TestClient(app)
    _register(client)
    token = _csrf(client, "/dashboard")
    client.post("/logout", data={"csrf_token": token})

    token = _csrf(client, "/login")
    response = client.post(
        "/login",
        data={"csrf_token": token, "email": "sam@example.com", "password": "wrong-pass"},
    )
    assert "Invalid login credentials" in response.text


def test_post_without_csrf_is_rejected(db_factory) -> None:
    client = TestClient(app)
    _register(client)
    response = client.post("/categories", data={"name": "Pets", "type": "expense"})
    assert response.status_code == 400


def test_invalid_transaction_form_rerenders_with_field_errors(db_factory) -> None:
    client = TestClient(app)
    _register(client)
    token = _csrf(client, "/transactions/new")

    response = client.post(
        "/transactions",
        data={
            "csrf_token": token,
            "type": "expense",
            "amount_cents": "-5",
            "description": "",
            "date": date(2024, 3, 1).isoformat(),
            "category_id": str(_food_category_id(db_factory)),
        },
    )

    assert response.status_code == 400
    assert "This field is required" in response.text
    with db_factory() as db:
        assert db.scalar(select(Transaction.id)) is None


def test_export_without_transactions_notifies_instead_of_downloading(db_factory) -> None:
    client = TestClient(app)
    _register(client)

    response = client.get("/transactions/export.csv", follow_redirects=False)
    assert response.status_code == 303
    assert "content-disposition" not in response.headers

    page = client.get(response.headers["location"])
    assert "No transactions to export" in page.text

    report = client.get("/reports/export.csv")
    assert "No data to export" in report.text


def test_create_transaction_and_export_csv(db_factory) -> None:
    client = TestClient(app)
    _register(client)
    token = _csrf(client, "/transactions/new")

    response = client.post(
        "/transactions",
        data={
            "csrf_token": token,
            "type": "expense",
            "amount_cents": "12.50",
            "description": "Pizza night",
            "date": date.today().isoformat(),
            "category_id": str(_food_category_id(db_factory)),
        },
        follow_redirects=False,
    )
    assert response.status_code == 303

    listing = client.get("/transactions")
    assert "Transaction added" in listing.text
    assert "Pizza night" in listing.text
    assert "$12.50" in listing.text

    export = client.get("/transactions/export.csv")
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    lines = export.text.strip().splitlines()
    assert lines[0] == "Date,Type,Category,Description,Amount"
    assert lines[1].endswith("expense,Food & Dining,Pizza night,12.50")

    summary = client.get("/api/category-summary?type=expense").json()
    assert summary[0]["name"] == "Food & Dining"
    assert summary[0]["amount_cents"] == 1250


def test_budget_page_shows_tier(db_factory) -> None:
    client = TestClient(app)
    _register(client)
    category_id = _food_category_id(db_factory)

    token = _csrf(client, "/budget")
    client.post(
        "/budget",
        data={"csrf_token": token, "category_id": str(category_id), "budget_cents": "20"},
    )
    token = _csrf(client, "/transactions/new")
    client.post(
        "/transactions",
        data={
            "csrf_token": token,
            "type": "expense",
            "amount_cents": "19",
            "description": "Groceries",
            "date": local_today().isoformat(),
            "category_id": str(category_id),
        },
    )

    page = client.get("/budget")
    assert "budget-danger" in page.text
    assert "95% used" in page.text

    statuses = client.get("/api/budget-status").json()
    food = next(row for row in statuses if row["category_id"] == category_id)
    assert food["status"]["status"] == "danger"


def test_other_users_rows_are_not_found(db_factory) -> None:
    owner = TestClient(app)
    _register(owner)
    category_id = _food_category_id(db_factory)

    intruder = TestClient(app)
    token = _csrf(intruder, "/login?mode=register")
    intruder.post(
        "/register",
        data={
            "csrf_token": token,
            "email": "eve@example.com",
            "password": "hunter22",
            "full_name": "Eve Doe",
        },
    )
    token = _csrf(intruder, "/categories")
    response = intruder.post(
        f"/categories/{category_id}/delete",
        data={"csrf_token": token},
        follow_redirects=False,
    )
    assert response.status_code == 303
    page = intruder.get(response.headers["location"])
    assert "Category not found" in page.text
    with db_factory() as db:
        assert db.get(Category, category_id) is not None


def test_unreadable_amounts_rerender_instead_of_failing(db_factory) -> None:
    client = TestClient(app)
    _register(client)
    category_id = _food_category_id(db_factory)

    for raw, message in (
        ("1e30", "Invalid amount"),
        ("Infinity", "Invalid amount"),
        ("99999999999999999999", "Amount is too large"),
    ):
        token = _csrf(client, "/transactions/new")
        response = client.post(
            "/transactions",
            data={
                "csrf_token": token,
                "type": "expense",
                "amount_cents": raw,
                "description": "Typo",
                "date": date(2024, 3, 1).isoformat(),
                "category_id": str(category_id),
            },
        )
        assert response.status_code == 400, raw
        assert message in response.text

    with db_factory() as db:
        assert db.scalar(select(Transaction.id)) is None


def test_grouped_amount_is_stored_in_full(db_factory) -> None:
    client = TestClient(app)
    _register(client)
    token = _csrf(client, "/transactions/new")
    client.post(
        "/transactions",
        data={
            "csrf_token": token,
            "type": "expense",
            "amount_cents": "1,500",
            "description": "Rent",
            "date": date(2024, 3, 1).isoformat(),
            "category_id": str(_food_category_id(db_factory)),
        },
    )
    with db_factory() as db:
        assert db.scalar(select(Transaction.amount_cents)) == 150_000


def test_pages_use_the_configured_local_day(db_factory, monkeypatch) -> None:
    monkeypatch.setattr(main, "local_today", lambda: date(2023, 7, 15))
    client = TestClient(app)
    _register(client)

    rows = client.get("/api/monthly-summary?months=3").json()
    assert [(row["year"], row["month"]) for row in rows] == [(2023, 5), (2023, 6), (2023, 7)]

    form = client.get("/transactions/new")
    assert 'value="2023-07-15"' in form.text


def test_requests_share_one_notifier_and_release_it(db_factory) -> None:
    client = TestClient(app)
    _register(client)
    assert client.get("/dashboard").status_code == 200
    assert main.auth_notifier.listener_count == 0
