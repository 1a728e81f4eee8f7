"""
Interface shared by the REST and Firestore backends, and the error policy
for list/aggregate reads.
"""

from __future__ import annotations

import copy
import functools
import logging
from typing import Any, Callable, Optional, Protocol

from crm_api.adapters.response import PagedResult
from crm_api.errors import SessionExpiredError
from crm_api.financials import FinancialYearCalendar

logger = logging.getLogger(__name__)

DEFAULT_PIPELINE_STATUSES = [
    {"id": "new-lead", "name": "New Lead", "color": "#e3f2fd", "order": 1},
    {"id": "qualifying", "name": "Qualifying", "color": "#fff3e0", "order": 2},
    {"id": "proposal-sent", "name": "Proposal Sent", "color": "#e8f5e9", "order": 3},
    {
        "id": "awaiting-decision",
        "name": "Awaiting Decision",
        "color": "#e1bee7",
        "order": 4,
    },
    {"id": "negotiation", "name": "Negotiation", "color": "#fff9c4", "order": 5},
    {"id": "won", "name": "Won", "color": "#c8e6c9", "order": 6, "isWon": True},
    {"id": "lost", "name": "Lost", "color": "#ffcdd2", "order": 7, "isLost": True},
]

DEFAULT_FINANCIAL_YEAR_SETTINGS = {
    "currentFinancialYear": "2024/2025",
    "financialYearStart": "March",
    "financialYearEnd": "February",
    "reportingMonth": "February",
}


def degradable(fallback: Callable[..., Any]):
    """
    Mark a list/aggregate read as allowed to degrade.

    When the backend has `degrade_list_failures` set, a failure is logged and
    `fallback(*args, **kwargs)` is returned instead. Session expiry always
    propagates so callers can send the user back to login. Single reads and
    mutations are never decorated.
    """

    def decorator(method):
        @functools.wraps(method)
        def wrapper(self, *args, **kwargs):
            try:
                return method(self, *args, **kwargs)
            except SessionExpiredError:
                raise
            except Exception:
                if not self.degrade_list_failures:
                    raise
                logger.exception(
                    "%s.%s failed; returning fallback",
                    type(self).__name__,
                    method.__name__,
                )
                return fallback(*args, **kwargs)

        wrapper.degradable = True
        return wrapper

    return decorator


def empty_list(*args, **kwargs) -> list:
    return []


def default_pipeline_statuses(*args, **kwargs) -> list[dict]:
    return copy.deepcopy(DEFAULT_PIPELINE_STATUSES)


def default_financial_year_settings(tenant_id: Optional[str] = None, *args, **kwargs) -> dict:
    return {**DEFAULT_FINANCIAL_YEAR_SETTINGS, "tenantId": tenant_id}


def sort_by_order(statuses: list[dict]) -> list[dict]:
    return sorted(statuses, key=lambda s: s.get("order") or 0)


class CrmBackend(Protocol):
    """Operations every backend provides, with identical semantics."""

    degrade_list_failures: bool

    # Clients

    def get_clients(
        self, filters: Optional[dict] = None, tenant_id: Optional[str] = None
    ) -> list[dict]:
        ...

    def get_clients_paginated(
        self,
        page: int = 1,
        page_size: int = 25,
        filters: Optional[dict] = None,
        sort_by: str = "lastContact",
        sort_order: str = "desc",
    ) -> PagedResult:
        ...

    def get_client(self, client_id: str) -> Optional[dict]:
        ...

    def create_client(self, data: dict, tenant_id: Optional[str] = None) -> str:
        ...

    def update_client(self, client_id: str, data: dict) -> None:
        ...

    def delete_client(self, client_id: str) -> None:
        ...

    def search_clients(self, query: str, filters: Optional[dict] = None) -> list[dict]:
        ...

    def update_client_pipeline_status(
        self, client_id: str, status: str, user_id: str = "system"
    ) -> list[dict]:
        ...

    def get_client_interactions(
        self, client_id: str, filters: Optional[dict] = None
    ) -> list[dict]:
        ...

    def create_interaction(self, client_id: str, data: dict) -> str:
        ...

    # Deals

    def get_deals(
        self, stage: Optional[str] = None, filters: Optional[dict] = None
    ) -> list[dict]:
        ...

    def get_deal(self, deal_id: str) -> Optional[dict]:
        ...

    def create_deal(self, data: dict) -> str:
        ...

    def update_deal(self, deal_id: str, data: dict) -> None:
        ...

    def delete_deal(self, deal_id: str) -> None:
        ...

    def move_deal_stage(self, deal_id: str, stage: str) -> None:
        ...

    # Follow-up tasks

    def get_follow_up_tasks(self, filters: Optional[dict] = None) -> list[dict]:
        ...

    def get_follow_up_task(self, task_id: str) -> Optional[dict]:
        ...

    def create_follow_up_task(self, data: dict) -> str:
        ...

    def update_follow_up_task(self, task_id: str, data: dict) -> None:
        ...

    def complete_follow_up_task(self, task_id: str, notes: str = "") -> None:
        ...

    def delete_follow_up_task(self, task_id: str) -> None:
        ...

    # Financials

    def get_client_financials_by_year(
        self, financial_year: Any, filters: Optional[dict] = None
    ) -> list[dict]:
        ...

    def save_client_financial(
        self,
        client_id: str,
        client_name: str,
        financial_year: Any,
        product_line: str,
        financial_data: dict,
        user_id: Optional[str],
    ) -> str:
        ...

    def get_budgets(self, financial_year: Any = None) -> list[dict]:
        ...

    def save_budget(
        self,
        salesperson_id: str,
        product_line: str,
        financial_year: Any,
        budget_amount: float,
        updated_by: Optional[str],
    ) -> str:
        ...

    def get_financial_year_settings(self, tenant_id: Optional[str] = None) -> dict:
        ...

    def save_financial_year_settings(
        self, settings: dict, tenant_id: Optional[str] = None
    ) -> None:
        ...

    def calculate_financial_year_months(
        self, tenant_id: Optional[str] = None
    ) -> FinancialYearCalendar:
        ...

    def get_financial_summary_by_product_line(self, financial_year: Any) -> list[dict]:
        ...

    def get_budget_vs_forecast(self, financial_year: Any) -> list[dict]:
        ...

    def upload_financial_file(self, file: Any, financial_year: Any) -> Any:
        ...

    # Reference data

    def get_pipeline_statuses(self, tenant_id: Optional[str] = None) -> list[dict]:
        ...

    def save_pipeline_statuses(
        self, statuses: list[dict], tenant_id: Optional[str] = None
    ) -> bool:
        ...

    def get_skills_partners(self) -> list[dict]:
        ...

    def get_product_lines(self) -> list[dict]:
        ...

    # Users and tenants

    def get_users(self, filters: Optional[dict] = None) -> list[dict]:
        ...

    def get_user(self, user_id: str) -> Optional[dict]:
        ...

    def get_tenants(self) -> list[dict]:
        ...

    def get_tenant(self, tenant_id: str) -> Optional[dict]:
        ...
