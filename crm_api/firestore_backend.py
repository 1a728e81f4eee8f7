"""
`CrmBackend` over Google Cloud Firestore.

Imported only when the Firestore backend is selected, so REST deployments
never load the Firestore libraries.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

import firebase_admin
from firebase_admin import firestore
from google.cloud.firestore_v1 import SERVER_TIMESTAMP, Query
from google.cloud.firestore_v1.base_query import FieldFilter

from crm_api.adapters.ids import decode_timestamp, format_timestamp, normalize_dates
from crm_api.adapters.response import PagedResult, Pagination
from crm_api.backend import (
    DEFAULT_FINANCIAL_YEAR_SETTINGS,
    default_financial_year_settings,
    default_pipeline_statuses,
    degradable,
    empty_list,
    sort_by_order,
)
from crm_api.errors import ApiError, NotFoundError
from crm_api.financials import (
    FinancialYearCalendar,
    budget_vs_forecast,
    calculate_full_year_forecast,
    financial_year_months,
    summarize_by_product_line,
)

logger = logging.getLogger(__name__)

CLIENTS_COLLECTION = "clients"
INTERACTIONS_COLLECTION = "interactions"
DEALS_COLLECTION = "deals"
TASKS_COLLECTION = "followUpTasks"
CLIENT_FINANCIALS_COLLECTION = "clientFinancials"
BUDGETS_COLLECTION = "budgets"
SETTINGS_COLLECTION = "systemSettings"
SKILLS_PARTNERS_COLLECTION = "skillsPartners"
PRODUCT_LINES_COLLECTION = "productLines"
USERS_COLLECTION = "users"
TENANTS_COLLECTION = "tenants"

PIPELINE_STATUSES_DOC = "pipelineStatuses"
FINANCIAL_YEAR_DOC = "financialYear"

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
RECORD_DATE_FIELDS = ("createdAt", "updatedAt")
INTERACTION_DATE_FIELDS = ("timestamp", "createdAt")

CLIENT_SEARCH_FIELDS = ("name", "contactPerson", "email", "phone")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
_WHITESPACE = re.compile(r"\s+")

ClientFactory = Callable[[], Any]


def default_client_factory(
    project: Optional[str] = None, database: Optional[str] = None
) -> ClientFactory:
    """Build a factory returning a Firestore client on the default Firebase app."""

    def create_client():
        try:
            firebase_admin.get_app()
        except ValueError:
            options = {"projectId": project} if project else None
            firebase_admin.initialize_app(options=options)
        if database:
            return firestore.client(database_id=database)
        return firestore.client()

    return create_client


def client_financial_id(client_id: str, financial_year: Any, product_line: str) -> str:
    return f"{client_id}_{financial_year}_{_WHITESPACE.sub('_', product_line)}"


def budget_id(salesperson_id: str, financial_year: Any, product_line: str) -> str:
    year = str(financial_year).replace("/", "-")
    return f"{salesperson_id}_{year}_{_WHITESPACE.sub('_', product_line)}"


def _settings_doc_id(name: str, tenant_id: Optional[str]) -> str:
    return f"{name}_{tenant_id}" if tenant_id else name


def _to_entity(snapshot, date_fields: Iterable[str] = RECORD_DATE_FIELDS) -> dict:
    return normalize_dates({**(snapshot.to_dict() or {}), "id": snapshot.id}, date_fields)


def _where(query, field: str, value: Any):
    return query.where(filter=FieldFilter(field, "==", value))


def _sort_key(value: Any) -> tuple:
    # Rank by kind first so mixed field types still compare.
    if isinstance(value, datetime):
        return (0, value.timestamp(), "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, float(value), "")
    return (2, 0.0, str(value))


def _latest_contact(entity: dict) -> datetime:
    value = entity.get("lastContact")
    return value if isinstance(value, datetime) else _EPOCH


class FirestoreCrmBackend:
    def __init__(
        self, client_factory: ClientFactory, *, degrade_list_failures: bool = True
    ):
        self.client_factory = client_factory
        self.degrade_list_failures = degrade_list_failures
        self._db = None

    @property
    def db(self):
        if self._db is None:
            logger.debug("Creating Firestore client")
            self._db = self.client_factory()
        return self._db

    def _collection(self, name: str):
        return self.db.collection(name)

    def _get(self, collection: str, doc_id: str, date_fields=RECORD_DATE_FIELDS):
        snapshot = self._collection(collection).document(doc_id).get()
        if not snapshot.exists:
            return None
        return _to_entity(snapshot, date_fields)

    def _stream(self, query, date_fields=RECORD_DATE_FIELDS) -> list[dict]:
        return [_to_entity(snapshot, date_fields) for snapshot in query.stream()]

    def _add(self, collection, data: dict) -> str:
        _, doc_ref = collection.add(data)
        return doc_ref.id

    def _update(self, collection: str, doc_id: str, data: dict) -> None:
        self._collection(collection).document(doc_id).update(
            {**data, "updatedAt": SERVER_TIMESTAMP}
        )

    # Clients

    @degradable(empty_list)
    def get_clients(
        self, filters: Optional[dict] = None, tenant_id: Optional[str] = None
    ) -> list[dict]:
        return self._query_clients(filters, tenant_id)

    def _query_clients(
        self, filters: Optional[dict] = None, tenant_id: Optional[str] = None
    ) -> list[dict]:
        filters = filters or {}
        query = self._collection(CLIENTS_COLLECTION)
        if tenant_id:
            query = _where(query, "tenantId", tenant_id)
        for field in ("status", "type", "assignedSalesPerson"):
            if filters.get(field):
                query = _where(query, field, filters[field])
        query = query.order_by("lastContact", direction=Query.DESCENDING)
        return self._stream(query, CLIENT_DATE_FIELDS)

    def get_clients_paginated(
        self,
        page: int = 1,
        page_size: int = 25,
        filters: Optional[dict] = None,
        sort_by: str = "lastContact",
        sort_order: str = "desc",
    ) -> PagedResult:
        filters = dict(filters or {})
        clients = self._query_clients(filters, filters.pop("tenantId", None))
        if sort_by and (sort_by, sort_order) != ("lastContact", "desc"):
            present = [c for c in clients if c.get(sort_by) is not None]
            missing = [c for c in clients if c.get(sort_by) is None]
            present.sort(
                key=lambda c: _sort_key(c[sort_by]), reverse=sort_order == "desc"
            )
            clients = present + missing

        total = len(clients)
        page = max(page, 1)
        start = (page - 1) * page_size
        return PagedResult(
            data=clients[start : start + page_size],
            pagination=Pagination(
                total=total,
                page=page,
                page_size=page_size,
                total_pages=max(1, -(-total // page_size)) if page_size else 1,
            ),
        )

    def get_client(self, client_id: str) -> Optional[dict]:
        return self._get(CLIENTS_COLLECTION, client_id, CLIENT_DATE_FIELDS)

    def create_client(self, data: dict, tenant_id: Optional[str] = None) -> str:
        client = {
            **data,
            "tenantId": tenant_id or data.get("tenantId"),
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
            "lastContact": data.get("lastContact") or SERVER_TIMESTAMP,
        }
        return self._add(self._collection(CLIENTS_COLLECTION), client)

    def update_client(self, client_id: str, data: dict) -> None:
        self._update(CLIENTS_COLLECTION, client_id, data)

    def delete_client(self, client_id: str) -> None:
        self._collection(CLIENTS_COLLECTION).document(client_id).delete()

    @degradable(empty_list)
    def search_clients(self, query: str, filters: Optional[dict] = None) -> list[dict]:
        needle = (query or "").strip().lower()
        clients = self._query_clients(filters, (filters or {}).get("tenantId"))
        if not needle:
            return clients
        return [
            client
            for client in clients
            if any(
                needle in str(client.get(field) or "").lower()
                for field in CLIENT_SEARCH_FIELDS
            )
        ]

    def update_client_pipeline_status(
        self, client_id: str, status: str, user_id: str = "system"
    ) -> list[dict]:
        client_ref = self._collection(CLIENTS_COLLECTION).document(client_id)
        snapshot = client_ref.get()
        if not snapshot.exists:
            raise NotFoundError("Client not found", 404)

        client = snapshot.to_dict() or {}
        history = [dict(entry) for entry in client.get("pipelineStatusHistory") or []]
        now = datetime.now(timezone.utc)

        if history and not history[-1].get("endDate"):
            current = history[-1]
            current["endDate"] = format_timestamp(now)
            started = current.get("startDate")
            if started:
                elapsed = now - decode_timestamp(started, "startDate")
                current["durationDays"] = elapsed.days

        history.append(
            {
                "status": status,
                "previousStatus": client.get("pipelineStatus"),
                "startDate": format_timestamp(now),
                "endDate": None,
                "durationDays": None,
                "changedBy": user_id,
            }
        )
        client_ref.update(
            {
                "pipelineStatus": status,
                "pipelineStatusHistory": history,
                "updatedAt": SERVER_TIMESTAMP,
            }
        )
        return history

    @degradable(empty_list)
    def get_client_interactions(
        self, client_id: str, filters: Optional[dict] = None
    ) -> list[dict]:
        filters = filters or {}
        query = (
            self._collection(CLIENTS_COLLECTION)
            .document(client_id)
            .collection(INTERACTIONS_COLLECTION)
        )
        for field in ("type", "userId"):
            if filters.get(field):
                query = _where(query, field, filters[field])
        query = query.order_by("timestamp", direction=Query.DESCENDING)
        return self._stream(query, INTERACTION_DATE_FIELDS)

    def create_interaction(self, client_id: str, data: dict) -> str:
        interactions = (
            self._collection(CLIENTS_COLLECTION)
            .document(client_id)
            .collection(INTERACTIONS_COLLECTION)
        )
        timestamp = data.get("timestamp") or SERVER_TIMESTAMP
        interaction_id = self._add(
            interactions, {**data, "timestamp": timestamp, "createdAt": SERVER_TIMESTAMP}
        )

        client_update = {"lastContact": timestamp}
        if data.get("followUpDate"):
            client_update.update(
                {
                    "nextFollowUpDate": data["followUpDate"],
                    "nextFollowUpReason": data.get("followUpReason") or "",
                    "nextFollowUpType": data.get("followUpType") or "call",
                    "nextFollowUpCreatedBy": data.get("userId"),
                    "nextFollowUpCreatedAt": SERVER_TIMESTAMP,
                }
            )
        self.update_client(client_id, client_update)
        return interaction_id

    # Deals

    @degradable(empty_list)
    def get_deals(
        self, stage: Optional[str] = None, filters: Optional[dict] = None
    ) -> list[dict]:
        filters = filters or {}
        deals = self._collection(DEALS_COLLECTION)
        # Single-field queries only; anything else is filtered here.
        if filters.get("clientId"):
            query = _where(deals, "clientId", filters["clientId"])
        elif stage:
            query = _where(deals, "stage", stage)
        elif filters.get("userId"):
            query = _where(deals, "assignedTo", filters["userId"])
        else:
            query = deals.order_by("lastContact", direction=Query.DESCENDING)

        results = self._stream(query, DEAL_DATE_FIELDS)
        if stage:
            results = [deal for deal in results if deal.get("stage") == stage]
        return sorted(results, key=_latest_contact, reverse=True)

    def get_deal(self, deal_id: str) -> Optional[dict]:
        return self._get(DEALS_COLLECTION, deal_id, DEAL_DATE_FIELDS)

    def create_deal(self, data: dict) -> str:
        deal = {
            **data,
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
            "lastContact": data.get("lastContact") or SERVER_TIMESTAMP,
            "stage": data.get("stage") or "new-lead",
        }
        return self._add(self._collection(DEALS_COLLECTION), deal)

    def update_deal(self, deal_id: str, data: dict) -> None:
        self._update(DEALS_COLLECTION, deal_id, data)

    def delete_deal(self, deal_id: str) -> None:
        self._collection(DEALS_COLLECTION).document(deal_id).delete()

    def move_deal_stage(self, deal_id: str, stage: str) -> None:
        self.update_deal(deal_id, {"stage": stage})

    # Follow-up tasks

    @degradable(empty_list)
    def get_follow_up_tasks(self, filters: Optional[dict] = None) -> list[dict]:
        filters = filters or {}
        query = self._collection(TASKS_COLLECTION)
        if filters.get("userId"):
            query = _where(query, "assignedTo", filters["userId"])
        for field in ("status", "clientId"):
            if filters.get(field):
                query = _where(query, field, filters[field])
        query = query.order_by("dueDate", direction=Query.ASCENDING)
        return self._stream(query, TASK_DATE_FIELDS)

    def get_follow_up_task(self, task_id: str) -> Optional[dict]:
        return self._get(TASKS_COLLECTION, task_id, TASK_DATE_FIELDS)

    def create_follow_up_task(self, data: dict) -> str:
        task = {
            **data,
            "status": data.get("status") or "pending",
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        }
        return self._add(self._collection(TASKS_COLLECTION), task)

    def update_follow_up_task(self, task_id: str, data: dict) -> None:
        self._update(TASKS_COLLECTION, task_id, data)

    def complete_follow_up_task(self, task_id: str, notes: str = "") -> None:
        task_ref = self._collection(TASKS_COLLECTION).document(task_id)
        snapshot = task_ref.get()
        if not snapshot.exists:
            raise NotFoundError("Follow-up task not found", 404)

        task = snapshot.to_dict() or {}
        task_ref.update(
            {
                "status": "completed",
                "completedAt": SERVER_TIMESTAMP,
                "completedNotes": notes,
                "updatedAt": SERVER_TIMESTAMP,
            }
        )

        if task.get("clientId"):
            self.create_interaction(
                task["clientId"],
                {
                    "type": "task_completed",
                    "summary": f"Follow-up task completed: {task.get('description', '')}",
                    "notes": notes,
                    "userId": task.get("assignedTo"),
                    "relatedTaskId": task_id,
                },
            )

    def delete_follow_up_task(self, task_id: str) -> None:
        self._collection(TASKS_COLLECTION).document(task_id).delete()

    # Financials

    @degradable(empty_list)
    def get_client_financials_by_year(
        self, financial_year: Any, filters: Optional[dict] = None
    ) -> list[dict]:
        filters = filters or {}
        financials = self._collection(CLIENT_FINANCIALS_COLLECTION)
        if filters.get("clientId"):
            query = _where(financials, "clientId", filters["clientId"])
        else:
            query = _where(financials, "financialYear", financial_year)

        results = self._stream(query)
        if filters.get("clientId") and financial_year:
            results = [r for r in results if r.get("financialYear") == financial_year]
        if filters.get("productLine"):
            results = [r for r in results if r.get("productLine") == filters["productLine"]]
        return results

    def save_client_financial(
        self,
        client_id: str,
        client_name: str,
        financial_year: Any,
        product_line: str,
        financial_data: dict,
        user_id: Optional[str],
    ) -> str:
        doc_id = client_financial_id(client_id, financial_year, product_line)
        doc_ref = self._collection(CLIENT_FINANCIALS_COLLECTION).document(doc_id)

        full_year_forecast = financial_data.get("fullYearForecast")
        if full_year_forecast is None:
            full_year_forecast = calculate_full_year_forecast(financial_data)

        record = {
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
            "fullYearForecast": full_year_forecast,
            "comments": financial_data.get("comments") or "",
            "learnershipDetails": financial_data.get("learnershipDetails") or [],
            "tapBusinessDetails": financial_data.get("tapBusinessDetails") or [],
            "complianceDetails": financial_data.get("complianceDetails") or [],
            "otherCoursesDetails": financial_data.get("otherCoursesDetails") or [],
            "lastUpdatedBy": user_id,
            "updatedAt": SERVER_TIMESTAMP,
        }
        if not doc_ref.get().exists:
            record["createdAt"] = SERVER_TIMESTAMP

        doc_ref.set(record, merge=True)
        return doc_id

    @degradable(empty_list)
    def get_budgets(self, financial_year: Any = None) -> list[dict]:
        query = self._collection(BUDGETS_COLLECTION)
        if financial_year:
            query = _where(query, "financialYear", financial_year)
        return self._stream(query)

    def save_budget(
        self,
        salesperson_id: str,
        product_line: str,
        financial_year: Any,
        budget_amount: float,
        updated_by: Optional[str],
    ) -> str:
        doc_id = budget_id(salesperson_id, financial_year, product_line)
        doc_ref = self._collection(BUDGETS_COLLECTION).document(doc_id)

        try:
            amount = float(budget_amount or 0)
        except (TypeError, ValueError):
            amount = 0.0
        record = {
            "salespersonId": salesperson_id,
            "productLine": product_line,
            "financialYear": financial_year,
            "budgetAmount": amount,
            "updatedBy": updated_by,
            "updatedAt": SERVER_TIMESTAMP,
        }
        if not doc_ref.get().exists:
            record["createdAt"] = SERVER_TIMESTAMP

        doc_ref.set(record, merge=True)
        return doc_id

    def _settings_document(self, name: str, tenant_id: Optional[str]):
        """Tenant settings document if present, else the global one, else None."""
        settings = self._collection(SETTINGS_COLLECTION)
        if tenant_id:
            snapshot = settings.document(_settings_doc_id(name, tenant_id)).get()
            if snapshot.exists:
                return snapshot.to_dict() or {}, tenant_id
        snapshot = settings.document(name).get()
        if snapshot.exists:
            return snapshot.to_dict() or {}, None
        return None, None

    @degradable(default_financial_year_settings)
    def get_financial_year_settings(self, tenant_id: Optional[str] = None) -> dict:
        data, owner = self._settings_document(FINANCIAL_YEAR_DOC, tenant_id)
        if data is None:
            return {**DEFAULT_FINANCIAL_YEAR_SETTINGS, "tenantId": None, "isSystemWide": True}

        defaults = DEFAULT_FINANCIAL_YEAR_SETTINGS
        return {
            "currentFinancialYear": data.get("currentFinancialYear")
            or defaults["currentFinancialYear"],
            "financialYearStart": data.get("financialYearStart")
            or defaults["financialYearStart"],
            "financialYearEnd": data.get("financialYearEnd")
            or defaults["financialYearEnd"],
            "reportingMonth": data.get("reportingMonth")
            or data.get("financialYearEnd")
            or defaults["reportingMonth"],
            "tenantId": owner,
            "isSystemWide": owner is None,
        }

    def save_financial_year_settings(
        self, settings: dict, tenant_id: Optional[str] = None
    ) -> None:
        doc_id = _settings_doc_id(FINANCIAL_YEAR_DOC, tenant_id)
        self._collection(SETTINGS_COLLECTION).document(doc_id).set(
            {**settings, "tenantId": tenant_id, "updatedAt": SERVER_TIMESTAMP},
            merge=True,
        )

    def calculate_financial_year_months(
        self, tenant_id: Optional[str] = None
    ) -> FinancialYearCalendar:
        return financial_year_months(self.get_financial_year_settings(tenant_id))

    @degradable(empty_list)
    def get_financial_summary_by_product_line(self, financial_year: Any) -> list[dict]:
        return summarize_by_product_line(self.get_client_financials_by_year(financial_year))

    @degradable(empty_list)
    def get_budget_vs_forecast(self, financial_year: Any) -> list[dict]:
        # Years are stored as both "2024/2025" and 2025, so every record is read.
        financials = self._stream(self._collection(CLIENT_FINANCIALS_COLLECTION))
        return budget_vs_forecast(
            financial_year,
            self.get_budgets(financial_year),
            financials,
            self.get_clients(),
            self.get_users(),
        )

    def upload_financial_file(self, file: Any, financial_year: Any) -> Any:
        raise ApiError("Financial file upload is only available through the REST API", 501)

    # Reference data

    @degradable(default_pipeline_statuses)
    def get_pipeline_statuses(self, tenant_id: Optional[str] = None) -> list[dict]:
        settings = self._collection(SETTINGS_COLLECTION)
        doc_ids = [PIPELINE_STATUSES_DOC]
        if tenant_id:
            doc_ids.insert(0, _settings_doc_id(PIPELINE_STATUSES_DOC, tenant_id))

        for doc_id in doc_ids:
            snapshot = settings.document(doc_id).get()
            if not snapshot.exists:
                continue
            statuses = (snapshot.to_dict() or {}).get("statuses")
            if isinstance(statuses, list) and statuses:
                return sort_by_order(statuses)
        return default_pipeline_statuses()

    def save_pipeline_statuses(
        self, statuses: list[dict], tenant_id: Optional[str] = None
    ) -> bool:
        doc_id = _settings_doc_id(PIPELINE_STATUSES_DOC, tenant_id)
        self._collection(SETTINGS_COLLECTION).document(doc_id).set(
            {"statuses": statuses, "tenantId": tenant_id, "updatedAt": SERVER_TIMESTAMP}
        )
        return True

    @degradable(empty_list)
    def get_skills_partners(self) -> list[dict]:
        partners = self._stream(self._collection(SKILLS_PARTNERS_COLLECTION))
        return sorted(partners, key=lambda p: (p.get("name") or "").lower())

    @degradable(empty_list)
    def get_product_lines(self) -> list[dict]:
        return sort_by_order(self._stream(self._collection(PRODUCT_LINES_COLLECTION)))

    # Users and tenants

    @degradable(empty_list)
    def get_users(self, filters: Optional[dict] = None) -> list[dict]:
        query = self._collection(USERS_COLLECTION)
        for field, value in (filters or {}).items():
            if value is not None and value != "":
                query = _where(query, field, value)
        return self._stream(query)

    def get_user(self, user_id: str) -> Optional[dict]:
        return self._get(USERS_COLLECTION, user_id)

    @degradable(empty_list)
    def get_tenants(self) -> list[dict]:
        return self._stream(self._collection(TENANTS_COLLECTION))

    def get_tenant(self, tenant_id: str) -> Optional[dict]:
        return self._get(TENANTS_COLLECTION, tenant_id)
