"""
`CrmBackend` over the CRM REST API.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from crm_api.adapters.ids import (
    format_timestamp,
    normalize_dates,
    normalize_entities,
    normalize_entity,
    serialize_dates,
)
from crm_api.adapters.response import PagedResult, unwrap, unwrap_paged
from crm_api.backend import (
    default_financial_year_settings,
    default_pipeline_statuses,
    degradable,
    empty_list,
    sort_by_order,
)
from crm_api.endpoints import (
    CLIENT,
    DEAL,
    FINANCIAL,
    REFERENCE,
    TASK,
    TENANT,
    USER,
    build_pagination_params,
    endpoint,
)
from crm_api.errors import NotFoundError
from crm_api.financials import (
    FinancialYearCalendar,
    calculate_full_year_forecast,
    financial_year_months,
)
from crm_api.http_client import ApiClient

CLIENT_DATE_FIELDS = (
    "createdAt",
    "updatedAt",
    "lastContact",
    "nextFollowUpDate",
    "nextFollowUpCreatedAt",
)
DEAL_DATE_FIELDS = (
    "createdAt",
    "updatedAt",
    "lastContact",
    "expectedCloseDate",
    "closedDate",
)
TASK_DATE_FIELDS = ("createdAt", "updatedAt", "dueDate", "completedAt")
FINANCIAL_DATE_FIELDS = ("createdAt", "updatedAt")
INTERACTION_DATE_FIELDS = ("timestamp", "createdAt")
INTERACTION_WRITE_DATE_FIELDS = ("timestamp", "followUpDate")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def _normalize(entity: Any, date_fields) -> Optional[dict]:
    return normalize_dates(normalize_entity(entity), date_fields)


def _normalize_all(entities: Any, date_fields) -> list[dict]:
    return [normalize_dates(e, date_fields) for e in normalize_entities(entities)]


def _created_id(result: Any) -> Any:
    if not isinstance(result, dict):
        return result
    return result.get("key") or result.get("id")


def _most_recent_contact_first(entities: list[dict]) -> list[dict]:
    return sorted(entities, key=lambda e: e.get("lastContact") or _EPOCH, reverse=True)


def _soonest_due_first(tasks: list[dict]) -> list[dict]:
    return sorted(tasks, key=lambda t: t.get("dueDate") or _FAR_FUTURE)


class RestCrmBackend:
    def __init__(self, client: ApiClient, *, degrade_list_failures: bool = True):
        self.client = client
        self.degrade_list_failures = degrade_list_failures

    # Clients

    @degradable(empty_list)
    def get_clients(
        self, filters: Optional[dict] = None, tenant_id: Optional[str] = None
    ) -> list[dict]:
        params = dict(filters or {})
        if tenant_id:
            params["tenantId"] = tenant_id
        clients = unwrap(self.client.get(CLIENT["LIST"], params))
        return _most_recent_contact_first(_normalize_all(clients, CLIENT_DATE_FIELDS))

    def get_clients_paginated(
        self,
        page: int = 1,
        page_size: int = 25,
        filters: Optional[dict] = None,
        sort_by: str = "lastContact",
        sort_order: str = "desc",
    ) -> PagedResult:
        params = {
            **build_pagination_params(page, page_size, sort_by, sort_order),
            **(filters or {}),
        }
        result = unwrap_paged(self.client.get(CLIENT["LIST"], params))
        return PagedResult(
            data=[_normalize(c, CLIENT_DATE_FIELDS) for c in result.data],
            pagination=result.pagination,
        )

    def get_client(self, client_id: str) -> Optional[dict]:
        try:
            client = unwrap(
                self.client.get(endpoint(CLIENT, "GET_BY_KEY", client_key=client_id))
            )
        except NotFoundError:
            return None
        return _normalize(client, CLIENT_DATE_FIELDS)

    def create_client(self, data: dict, tenant_id: Optional[str] = None) -> str:
        payload = serialize_dates(data, CLIENT_DATE_FIELDS)
        if tenant_id:
            payload["tenantId"] = tenant_id
        return _created_id(unwrap(self.client.post(CLIENT["CREATE"], payload)))

    def update_client(self, client_id: str, data: dict) -> None:
        unwrap(
            self.client.put(
                endpoint(CLIENT, "UPDATE", client_id=client_id),
                serialize_dates(data, CLIENT_DATE_FIELDS),
            )
        )

    def delete_client(self, client_id: str) -> None:
        unwrap(self.client.delete(endpoint(CLIENT, "DELETE", client_id=client_id)))

    @degradable(empty_list)
    def search_clients(self, query: str, filters: Optional[dict] = None) -> list[dict]:
        params = {"q": query, **(filters or {})}
        clients = unwrap(self.client.get(CLIENT["SEARCH"], params))
        return _normalize_all(clients, CLIENT_DATE_FIELDS)

    def update_client_pipeline_status(
        self, client_id: str, status: str, user_id: str = "system"
    ) -> list[dict]:
        history = unwrap(
            self.client.put(
                endpoint(CLIENT, "UPDATE_PIPELINE_STATUS", client_id=client_id),
                {"status": status, "changedBy": user_id},
            )
        )
        return history or []

    @degradable(empty_list)
    def get_client_interactions(
        self, client_id: str, filters: Optional[dict] = None
    ) -> list[dict]:
        interactions = unwrap(
            self.client.get(
                endpoint(CLIENT, "GET_INTERACTIONS", client_id=client_id), filters
            )
        )
        return _normalize_all(interactions, INTERACTION_DATE_FIELDS)

    def create_interaction(self, client_id: str, data: dict) -> str:
        result = unwrap(
            self.client.post(
                endpoint(CLIENT, "CREATE_INTERACTION", client_id=client_id),
                serialize_dates(data, INTERACTION_WRITE_DATE_FIELDS),
            )
        )
        return _created_id(result)

    # Deals

    @degradable(empty_list)
    def get_deals(
        self, stage: Optional[str] = None, filters: Optional[dict] = None
    ) -> list[dict]:
        params = dict(filters or {})
        if stage:
            params["stage"] = stage
        deals = unwrap(self.client.get(DEAL["LIST"], params))
        return _most_recent_contact_first(_normalize_all(deals, DEAL_DATE_FIELDS))

    def get_deal(self, deal_id: str) -> Optional[dict]:
        try:
            deal = unwrap(self.client.get(endpoint(DEAL, "GET_BY_KEY", deal_key=deal_id)))
        except NotFoundError:
            return None
        return _normalize(deal, DEAL_DATE_FIELDS)

    def create_deal(self, data: dict) -> str:
        payload = serialize_dates(data, DEAL_DATE_FIELDS)
        return _created_id(unwrap(self.client.post(DEAL["CREATE"], payload)))

    def update_deal(self, deal_id: str, data: dict) -> None:
        unwrap(
            self.client.put(
                endpoint(DEAL, "UPDATE", deal_id=deal_id),
                serialize_dates(data, DEAL_DATE_FIELDS),
            )
        )

    def delete_deal(self, deal_id: str) -> None:
        unwrap(self.client.delete(endpoint(DEAL, "DELETE", deal_id=deal_id)))

    def move_deal_stage(self, deal_id: str, stage: str) -> None:
        unwrap(
            self.client.put(
                endpoint(DEAL, "UPDATE_STAGE", deal_id=deal_id), {"stage": stage}
            )
        )

    # Follow-up tasks

    @degradable(empty_list)
    def get_follow_up_tasks(self, filters: Optional[dict] = None) -> list[dict]:
        filters = filters or {}
        params = {
            "assignedTo": filters.get("userId"),
            "status": filters.get("status"),
            "clientId": filters.get("clientId"),
        }
        tasks = unwrap(self.client.get(TASK["LIST"], params))
        return _soonest_due_first(_normalize_all(tasks, TASK_DATE_FIELDS))

    def get_follow_up_task(self, task_id: str) -> Optional[dict]:
        try:
            task = unwrap(self.client.get(endpoint(TASK, "GET_BY_KEY", task_key=task_id)))
        except NotFoundError:
            return None
        return _normalize(task, TASK_DATE_FIELDS)

    def create_follow_up_task(self, data: dict) -> str:
        payload = serialize_dates(
            {**data, "status": data.get("status") or "pending"}, TASK_DATE_FIELDS
        )
        return _created_id(unwrap(self.client.post(TASK["CREATE"], payload)))

    def update_follow_up_task(self, task_id: str, data: dict) -> None:
        unwrap(
            self.client.put(
                endpoint(TASK, "UPDATE", task_id=task_id),
                serialize_dates(data, TASK_DATE_FIELDS),
            )
        )

    def complete_follow_up_task(self, task_id: str, notes: str = "") -> None:
        unwrap(
            self.client.put(
                endpoint(TASK, "COMPLETE", task_id=task_id),
                {
                    "notes": notes,
                    "completedAt": format_timestamp(datetime.now(timezone.utc)),
                },
            )
        )

    def delete_follow_up_task(self, task_id: str) -> None:
        unwrap(self.client.delete(endpoint(TASK, "DELETE", task_id=task_id)))

    # Financials

    @degradable(empty_list)
    def get_client_financials_by_year(
        self, financial_year: Any, filters: Optional[dict] = None
    ) -> list[dict]:
        params = {"financialYear": financial_year, **(filters or {})}
        financials = unwrap(self.client.get(FINANCIAL["CLIENT_FINANCIALS_BY_YEAR"], params))
        return _normalize_all(financials, FINANCIAL_DATE_FIELDS)

    def save_client_financial(
        self,
        client_id: str,
        client_name: str,
        financial_year: Any,
        product_line: str,
        financial_data: dict,
        user_id: Optional[str],
    ) -> str:
        full_year_forecast = financial_data.get("fullYearForecast")
        if full_year_forecast is None:
            full_year_forecast = calculate_full_year_forecast(financial_data)

        payload = {
            "clientId": client_id,
            "clientName": client_name,
            "financialYear": financial_year,
            "productLine": product_line,
            "history": financial_data.get("history")
            or {
                "yearMinus1": 0,
                "yearMinus2": 0,
                "yearMinus3": 0,
                "currentYearYTD": 0,
            },
            "months": financial_data.get("months") or {},
            "monthComments": financial_data.get("monthComments") or {},
            "fullYearForecast": full_year_forecast,
            "comments": financial_data.get("comments") or "",
            "learnershipDetails": financial_data.get("learnershipDetails") or [],
            "tapBusinessDetails": financial_data.get("tapBusinessDetails") or [],
            "complianceDetails": financial_data.get("complianceDetails") or [],
            "otherCoursesDetails": financial_data.get("otherCoursesDetails") or [],
            "updatedBy": user_id,
        }
        return _created_id(unwrap(self.client.post(FINANCIAL["CLIENT_FINANCIALS"], payload)))

    @degradable(empty_list)
    def get_budgets(self, financial_year: Any = None) -> list[dict]:
        budgets = unwrap(
            self.client.get(FINANCIAL["BUDGETS"], {"financialYear": financial_year})
        )
        return _normalize_all(budgets, FINANCIAL_DATE_FIELDS)

    def save_budget(
        self,
        salesperson_id: str,
        product_line: str,
        financial_year: Any,
        budget_amount: float,
        updated_by: Optional[str],
    ) -> str:
        try:
            amount = float(budget_amount or 0)
        except (TypeError, ValueError):
            amount = 0.0
        payload = {
            "salespersonId": salesperson_id,
            "productLine": product_line,
            "financialYear": financial_year,
            "budgetAmount": amount,
            "updatedBy": updated_by,
        }
        return _created_id(unwrap(self.client.post(FINANCIAL["BUDGETS"], payload)))

    @degradable(default_financial_year_settings)
    def get_financial_year_settings(self, tenant_id: Optional[str] = None) -> dict:
        settings = unwrap(
            self.client.get(FINANCIAL["FINANCIAL_YEAR_SETTINGS"], {"tenantId": tenant_id})
        )
        return settings or default_financial_year_settings(tenant_id)

    def save_financial_year_settings(
        self, settings: dict, tenant_id: Optional[str] = None
    ) -> None:
        unwrap(
            self.client.put(
                FINANCIAL["FINANCIAL_YEAR_SETTINGS"], {**settings, "tenantId": tenant_id}
            )
        )

    def calculate_financial_year_months(
        self, tenant_id: Optional[str] = None
    ) -> FinancialYearCalendar:
        return financial_year_months(self.get_financial_year_settings(tenant_id))

    @degradable(empty_list)
    def get_financial_summary_by_product_line(self, financial_year: Any) -> list[dict]:
        summary = unwrap(
            self.client.get(
                FINANCIAL["SUMMARY_BY_PRODUCT_LINE"], {"financialYear": financial_year}
            )
        )
        # The API keys the summary by product line.
        if isinstance(summary, dict):
            return list(summary.values())
        return summary if isinstance(summary, list) else []

    @degradable(empty_list)
    def get_budget_vs_forecast(self, financial_year: Any) -> list[dict]:
        comparison = unwrap(
            self.client.get(
                FINANCIAL["BUDGET_VS_FORECAST"], {"financialYear": financial_year}
            )
        )
        return comparison or []

    def upload_financial_file(self, file: Any, financial_year: Any) -> Any:
        return unwrap(
            self.client.upload(
                FINANCIAL["UPLOAD_DATA"],
                {"file": file},
                {"financialYear": financial_year},
            )
        )

    # Reference data

    @degradable(default_pipeline_statuses)
    def get_pipeline_statuses(self, tenant_id: Optional[str] = None) -> list[dict]:
        statuses = unwrap(
            self.client.get(REFERENCE["PIPELINE_STATUSES"], {"tenantId": tenant_id})
        )
        if isinstance(statuses, list) and statuses:
            return sort_by_order(statuses)
        return default_pipeline_statuses()

    def save_pipeline_statuses(
        self, statuses: list[dict], tenant_id: Optional[str] = None
    ) -> bool:
        unwrap(
            self.client.post(
                REFERENCE["SAVE_PIPELINE_STATUSES"],
                {"statuses": statuses, "tenantId": tenant_id},
            )
        )
        return True

    @degradable(empty_list)
    def get_skills_partners(self) -> list[dict]:
        return normalize_entities(unwrap(self.client.get(REFERENCE["SKILLS_PARTNERS"])))

    @degradable(empty_list)
    def get_product_lines(self) -> list[dict]:
        product_lines = unwrap(self.client.get(REFERENCE["PRODUCT_LINES"]))
        return _normalize_all(product_lines, FINANCIAL_DATE_FIELDS)

    # Users and tenants

    @degradable(empty_list)
    def get_users(self, filters: Optional[dict] = None) -> list[dict]:
        users = unwrap(self.client.get(USER["LIST"], filters))
        return _normalize_all(users, FINANCIAL_DATE_FIELDS)

    def get_user(self, user_id: str) -> Optional[dict]:
        try:
            user = unwrap(self.client.get(endpoint(USER, "GET_BY_KEY", user_key=user_id)))
        except NotFoundError:
            return None
        return _normalize(user, FINANCIAL_DATE_FIELDS)

    @degradable(empty_list)
    def get_tenants(self) -> list[dict]:
        return _normalize_all(unwrap(self.client.get(TENANT["LIST"])), FINANCIAL_DATE_FIELDS)

    def get_tenant(self, tenant_id: str) -> Optional[dict]:
        try:
            tenant = unwrap(
                self.client.get(endpoint(TENANT, "GET_BY_KEY", tenant_key=tenant_id))
            )
        except NotFoundError:
            return None
        return _normalize(tenant, FINANCIAL_DATE_FIELDS)
