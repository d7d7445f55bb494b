import re
from pathlib import Path


def _css() -> str:
    return Path("static/css/main.css").read_text(encoding="utf-8")


def test_budget_tiers_have_distinct_progress_colors() -> None:
    css = _css()
    for tier in ("warning", "danger"):
        rule = re.search(rf"\.progress-bar\.tier-{tier}\s*\{{[^}}]*\}}", css, re.DOTALL)
        assert rule, f"Expected a `.progress-bar.tier-{tier}` rule in static/css/main.css"
        assert "background:" in rule.group(0)


def test_filter_bar_pills_do_not_wrap() -> None:
    css = _css()

    rule = re.search(r"\.filter-bar\s+\.pill\s*\{[^}]*\}", css, re.DOTALL)
    assert rule, "Expected a `.filter-bar .pill { ... }` rule in static/css/main.css"
    assert "white-space: nowrap;" in rule.group(0)


def test_dismissed_toasts_are_hidden() -> None:
    rule = re.search(r"\.toast\.hide\s*\{[^}]*\}", _css(), re.DOTALL)
    assert rule
    assert "display: none;" in rule.group(0)
