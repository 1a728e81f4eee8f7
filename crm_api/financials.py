"""
Financial-year arithmetic over already-fetched records.

Client financial records look like:
    {"clientId", "financialYear", "productLine", "fullYearForecast",
     "history": {"currentYearYTD", "yearMinus1", "yearMinus2", "yearMinus3"},
     "months": {"mar2024": 1000, ...}}
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Mapping, Optional

MONTH_ABBREVIATIONS = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]

_MONTH_NUMBERS = {
    "january": 1, "february": 2, "march": 3, "april": 4,
    "may": 5, "june": 6, "july": 7, "august": 8,
    "september": 9, "october": 10, "november": 11, "december": 12,
}

# Retired product lines excluded from budget comparisons.
LEGACY_PRODUCT_LINES = {"general", "consulting", "conculting"}

HISTORY_FIELDS = ("yearMinus1", "yearMinus2", "yearMinus3")


@dataclass(frozen=True)
class FinancialMonth:
    name: str
    month_number: int
    year: int
    key: str

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "monthNumber": self.month_number,
            "year": self.year,
            "key": self.key,
        }


@dataclass
class FinancialYearCalendar:
    months: list[FinancialMonth]
    fy_start_month: int
    fy_end_month: int
    reporting_month: int
    current_financial_year: Optional[str]

    def as_dict(self) -> dict:
        return {
            "months": [month.as_dict() for month in self.months],
            "fyStartMonth": self.fy_start_month,
            "fyEndMonth": self.fy_end_month,
            "reportingMonth": self.reporting_month,
            "currentFinancialYear": self.current_financial_year,
        }


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def month_number(month_name: Optional[str]) -> int:
    """Month number (1-12) for an English month name; unknown names map to 1."""
    if not month_name:
        return 1
    return _MONTH_NUMBERS.get(month_name.strip().lower(), 1)


def calculate_full_year_forecast(financial_data: Mapping[str, Any]) -> float:
    """Year-to-date actuals plus every remaining month's forecast."""
    history = financial_data.get("history") or {}
    months = financial_data.get("months") or {}
    ytd = _number(history.get("currentYearYTD"))
    return ytd + sum(_number(value) for value in months.values())


def financial_year_end(current_financial_year: Any, today: Optional[date] = None) -> int:
    """End year of a "2024/2025" style label; the current year otherwise."""
    if isinstance(current_financial_year, str):
        parts = current_financial_year.split("/")
        if len(parts) == 2 and parts[1].strip().isdigit():
            return int(parts[1])
    return (today or date.today()).year


def financial_year_months(
    settings: Mapping[str, Any], today: Optional[date] = None
) -> FinancialYearCalendar:
    fy_start = month_number(settings.get("financialYearStart") or "March")
    fy_end = month_number(settings.get("financialYearEnd") or "February")
    reporting = month_number(
        settings.get("reportingMonth") or settings.get("financialYearEnd") or "February"
    )
    end_year = financial_year_end(settings.get("currentFinancialYear"), today)

    months = []
    for offset in range(12):
        index = (fy_start - 1 + offset) % 12
        # Months before the start month fall in the end year.
        year = end_year if index < fy_start - 1 else end_year - 1
        name = MONTH_ABBREVIATIONS[index]
        months.append(
            FinancialMonth(
                name=name,
                month_number=index + 1,
                year=year,
                key=f"{name.lower()}{year}",
            )
        )

    return FinancialYearCalendar(
        months=months,
        fy_start_month=fy_start,
        fy_end_month=fy_end,
        reporting_month=reporting,
        current_financial_year=settings.get("currentFinancialYear"),
    )


def financial_years_match(record_year: Any, target_year: Any) -> bool:
    """Compare years across the "2024/2025", "2025" and 2025 spellings."""
    record = str(record_year or "")
    target = str(target_year or "")
    if record == target:
        return True
    if "/" in target and record == target.split("/")[1]:
        return True
    if "/" in record and record.split("/")[1] == target:
        return True
    return False


def is_legacy_product_line(product_line: Optional[str]) -> bool:
    compact = "".join((product_line or "").lower().split())
    return compact in LEGACY_PRODUCT_LINES or "consult" in compact


def normalize_product_line(product_line: Optional[str]) -> str:
    return (product_line or "Other").strip() or "Other"


def summarize_by_product_line(financials: Iterable[Mapping[str, Any]]) -> list[dict]:
    summary: dict[str, dict] = {}
    for financial in financials:
        product_line = financial.get("productLine") or "Other"
        entry = summary.setdefault(
            product_line,
            {
                "productLine": product_line,
                "totalYTD": 0.0,
                "totalForecast": 0.0,
                "clientCount": 0,
                "yearMinus1": 0.0,
                "yearMinus2": 0.0,
                "yearMinus3": 0.0,
            },
        )
        history = financial.get("history") or {}
        entry["totalYTD"] += _number(history.get("currentYearYTD"))
        entry["totalForecast"] += _number(financial.get("fullYearForecast"))
        entry["clientCount"] += 1
        for field in HISTORY_FIELDS:
            entry[field] += _number(history.get(field))
    return list(summary.values())


def budget_vs_forecast(
    financial_year: Any,
    budgets: Iterable[Mapping[str, Any]],
    financials: Iterable[Mapping[str, Any]],
    clients: Iterable[Mapping[str, Any]],
    users: Iterable[Mapping[str, Any]],
) -> list[dict]:
    """
    Compare each salesperson's budget with the forecasts of their clients.

    Forecasts are attributed through the client's `assignedSalesPerson`;
    users with neither budget nor forecast are left out.
    """
    clients_by_id = {client.get("id"): client for client in clients}
    budgets = list(budgets)

    forecasts: dict[str, dict[str, float]] = {}
    for financial in financials:
        if not financial_years_match(financial.get("financialYear"), financial_year):
            continue
        client = clients_by_id.get(financial.get("clientId"))
        if not client or not client.get("assignedSalesPerson"):
            continue
        if is_legacy_product_line(financial.get("productLine")):
            continue
        per_line = forecasts.setdefault(client["assignedSalesPerson"], {})
        product_line = normalize_product_line(financial.get("productLine"))
        per_line[product_line] = per_line.get(product_line, 0.0) + _number(
            financial.get("fullYearForecast")
        )

    comparison = []
    for user in users:
        user_id = user.get("id")
        user_budgets: dict[str, float] = {}
        for budget in budgets:
            if budget.get("salespersonId") != user_id:
                continue
            # First budget per product line wins.
            user_budgets.setdefault(
                normalize_product_line(budget.get("productLine")),
                _number(budget.get("budgetAmount")),
            )
        user_forecasts = forecasts.get(user_id, {})

        product_data = {}
        for product_line in {*user_budgets, *user_forecasts}:
            product_data[product_line] = {
                "budget": user_budgets.get(product_line, 0.0),
                "forecast": user_forecasts.get(product_line, 0.0),
            }
        total_budget = sum(entry["budget"] for entry in product_data.values())
        total_forecast = sum(entry["forecast"] for entry in product_data.values())
        if total_budget <= 0 and total_forecast <= 0:
            continue

        variance = total_forecast - total_budget
        comparison.append(
            {
                "userId": user_id,
                "userName": user.get("displayName") or user.get("email") or "Unknown",
                "productData": product_data,
                "totalBudget": total_budget,
                "totalForecast": total_forecast,
                "variance": variance,
                "variancePercent": (
                    variance / total_budget * 100 if total_budget > 0 else 0.0
                ),
            }
        )
    return comparison
