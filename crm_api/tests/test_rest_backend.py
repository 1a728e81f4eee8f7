import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from crm_api.backend import DEFAULT_PIPELINE_STATUSES
from crm_api.errors import ApiError, NotFoundError, SessionExpiredError
from crm_api.rest_backend import RestCrmBackend

GUID = "3f2504e0-4f89-11d3-9a0c-0305e82c3301"


def envelope(result):
    return {"isError": False, "result": result}


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class RestBackendTestCase(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.backend = RestCrmBackend(self.client)


class ClientOperationTests(RestBackendTestCase):
    def test_get_clients_normalizes_and_sorts(self):
        self.client.get.return_value = envelope(
            [
                {"id": 1, "key": "k1", "lastContact": "2024-01-01T00:00:00Z"},
                {"id": 2, "key": "k2", "lastContact": None},
                {"id": 3, "key": "k3", "lastContact": "2024-02-01T00:00:00Z"},
            ]
        )

        clients = self.backend.get_clients({"status": "active"}, tenant_id="t1")

        self.client.get.assert_called_once_with(
            "/api/Client/GetList", {"status": "active", "tenantId": "t1"}
        )
        self.assertEqual([c["id"] for c in clients], ["k3", "k1", "k2"])
        self.assertEqual(clients[0]["_apiId"], 3)
        self.assertEqual(clients[0]["lastContact"], utc(2024, 2, 1))

    def test_get_clients_paginated(self):
        self.client.get.return_value = envelope(
            {
                "items": [{"id": 1, "key": "k1", "createdAt": "2024-03-01T00:00:00Z"}],
                "totalCount": 26,
                "page": 2,
                "pageSize": 25,
                "totalPages": 2,
            }
        )

        page = self.backend.get_clients_paginated(page=2, filters={"type": "corporate"})

        self.client.get.assert_called_once_with(
            "/api/Client/GetList",
            {
                "page": 2,
                "pageSize": 25,
                "sortBy": "lastContact",
                "sortOrder": "desc",
                "type": "corporate",
            },
        )
        self.assertEqual(page.data[0]["id"], "k1")
        self.assertEqual(page.data[0]["createdAt"], utc(2024, 3, 1))
        self.assertEqual(
            page.pagination.as_dict(),
            {"total": 26, "page": 2, "pageSize": 25, "totalPages": 2},
        )

    def test_get_client(self):
        self.client.get.return_value = envelope(
            {"id": 7, "key": GUID, "nextFollowUpDate": "2024-03-01T00:00:00Z"}
        )

        client = self.backend.get_client(GUID)

        self.client.get.assert_called_once_with(
            f"/api/Client/GetByKey?clientKey={GUID}"
        )
        self.assertEqual(client["id"], GUID)
        self.assertEqual(client["nextFollowUpDate"], utc(2024, 3, 1))

    def test_get_client_not_found_is_none(self):
        self.client.get.side_effect = NotFoundError("Client not found", 404)
        self.assertIsNone(self.backend.get_client("missing"))

    def test_get_client_other_errors_propagate(self):
        self.client.get.side_effect = ApiError("Server error", 500)
        with self.assertRaises(ApiError):
            self.backend.get_client("k1")

    def test_create_client_serializes_dates(self):
        self.client.post.return_value = envelope({"id": 9, "key": "new-key"})

        new_id = self.backend.create_client(
            {"name": "Acme", "lastContact": utc(2024, 3, 1)}, tenant_id="t1"
        )

        self.assertEqual(new_id, "new-key")
        self.client.post.assert_called_once_with(
            "/api/Client/CreateClient",
            {"name": "Acme", "lastContact": "2024-03-01T00:00:00.000Z", "tenantId": "t1"},
        )

    def test_create_returns_numeric_id_without_key(self):
        self.client.post.return_value = envelope({"id": 9})
        self.assertEqual(self.backend.create_client({"name": "Acme"}), 9)

    def test_update_and_delete_client(self):
        self.client.put.return_value = envelope(None)
        self.client.delete.return_value = envelope(None)

        self.backend.update_client("k1", {"name": "New"})
        self.backend.delete_client("k1")

        self.client.put.assert_called_once_with(
            "/api/Client/UpdateClient?clientId=k1", {"name": "New"}
        )
        self.client.delete.assert_called_once_with("/api/Client/Delete?clientId=k1")

    def test_mutation_errors_propagate(self):
        self.client.put.return_value = {
            "isError": True,
            "errorMessage": "Validation failed",
            "statusCode": 422,
        }
        with self.assertRaises(ApiError) as ctx:
            self.backend.update_client("k1", {"name": ""})
        self.assertEqual(ctx.exception.status_code, 422)

    def test_search_clients(self):
        self.client.get.return_value = envelope([{"id": 1, "key": "k1"}])

        self.assertEqual(self.backend.search_clients("acme")[0]["id"], "k1")
        self.client.get.assert_called_once_with("/api/Client/GetList", {"q": "acme"})

    def test_update_pipeline_status(self):
        history = [{"status": "won", "changedBy": "u1"}]
        self.client.put.return_value = envelope(history)

        self.assertEqual(
            self.backend.update_client_pipeline_status("k1", "won", "u1"), history
        )
        self.client.put.assert_called_once_with(
            "/api/Client/UpdatePipelineStatus?clientId=k1",
            {"status": "won", "changedBy": "u1"},
        )

    def test_interactions(self):
        self.client.get.return_value = envelope(
            [{"id": 1, "key": "i1", "timestamp": "2024-03-01T00:00:00Z"}]
        )
        self.client.post.return_value = envelope({"key": "i2"})

        interactions = self.backend.get_client_interactions("k1", {"type": "call"})
        new_id = self.backend.create_interaction(
            "k1", {"type": "call", "timestamp": utc(2024, 3, 1)}
        )

        self.assertEqual(interactions[0]["timestamp"], utc(2024, 3, 1))
        self.client.get.assert_called_once_with(
            "/api/Client/GetClientInteractions?clientId=k1", {"type": "call"}
        )
        self.assertEqual(new_id, "i2")
        self.assertEqual(
            self.client.post.call_args.args[1],
            {"type": "call", "timestamp": "2024-03-01T00:00:00.000Z"},
        )


class DealAndTaskOperationTests(RestBackendTestCase):
    def test_get_deals_by_stage_sorted_by_last_contact(self):
        self.client.get.return_value = envelope(
            [
                {"id": 1, "key": "d1", "lastContact": "2024-01-01T00:00:00Z"},
                {"id": 2, "key": "d2", "lastContact": "2024-05-01T00:00:00Z"},
            ]
        )

        deals = self.backend.get_deals("proposal-sent", {"clientId": "c1"})

        self.client.get.assert_called_once_with(
            "/api/Deal/GetList", {"clientId": "c1", "stage": "proposal-sent"}
        )
        self.assertEqual([d["id"] for d in deals], ["d2", "d1"])

    def test_get_deals_degrades_to_empty_list(self):
        self.client.get.side_effect = ApiError("Server error", 500)
        with self.assertLogs("crm_api.backend", level="ERROR"):
            self.assertEqual(self.backend.get_deals(), [])

    def test_session_expiry_is_never_degraded(self):
        self.client.get.side_effect = SessionExpiredError()
        with self.assertRaises(SessionExpiredError):
            self.backend.get_deals()

    def test_degrading_can_be_disabled(self):
        backend = RestCrmBackend(self.client, degrade_list_failures=False)
        self.client.get.side_effect = ApiError("Server error", 500)
        with self.assertRaises(ApiError):
            backend.get_deals()

    def test_deal_mutations(self):
        self.client.post.return_value = envelope({"key": "d9"})
        self.client.put.return_value = envelope(None)

        self.assertEqual(
            self.backend.create_deal({"title": "Deal", "expectedCloseDate": utc(2024, 6, 30)}),
            "d9",
        )
        self.assertEqual(
            self.client.post.call_args.args[1]["expectedCloseDate"],
            "2024-06-30T00:00:00.000Z",
        )

        self.backend.move_deal_stage("d9", "won")
        self.client.put.assert_called_with(
            "/api/Deal/UpdateDealStage?dealId=d9", {"stage": "won"}
        )

    def test_get_deal_not_found(self):
        self.client.get.side_effect = NotFoundError("Missing", 404)
        self.assertIsNone(self.backend.get_deal("d1"))

    def test_get_follow_up_tasks_maps_filters_and_sorts(self):
        self.client.get.return_value = envelope(
            [
                {"id": 1, "key": "t1", "dueDate": None},
                {"id": 2, "key": "t2", "dueDate": "2024-04-01T00:00:00Z"},
                {"id": 3, "key": "t3", "dueDate": "2024-03-01T00:00:00Z"},
            ]
        )

        tasks = self.backend.get_follow_up_tasks({"userId": "u1", "status": "pending"})

        self.client.get.assert_called_once_with(
            "/api/Task/GetList",
            {"assignedTo": "u1", "status": "pending", "clientId": None},
        )
        self.assertEqual([t["id"] for t in tasks], ["t3", "t2", "t1"])

    def test_create_task_defaults_to_pending(self):
        self.client.post.return_value = envelope({"key": "t9"})

        self.backend.create_follow_up_task({"description": "Call back"})

        self.client.post.assert_called_once_with(
            "/api/Task/CreateTask", {"description": "Call back", "status": "pending"}
        )

    def test_complete_task(self):
        self.client.put.return_value = envelope(None)

        self.backend.complete_follow_up_task("t1", "Done")

        path, body = self.client.put.call_args.args
        self.assertEqual(path, "/api/Task/CompleteTask?taskId=t1")
        self.assertEqual(body["notes"], "Done")
        self.assertTrue(body["completedAt"].endswith("Z"))


class FinancialOperationTests(RestBackendTestCase):
    def test_save_client_financial_computes_forecast(self):
        self.client.post.return_value = envelope({"key": "f1"})

        financial_id = self.backend.save_client_financial(
            "c1",
            "Acme",
            "2024/2025",
            "Learnerships",
            {"history": {"currentYearYTD": 1000}, "months": {"mar2025": 250, "feb2025": "x"}},
            "u1",
        )

        self.assertEqual(financial_id, "f1")
        path, payload = self.client.post.call_args.args
        self.assertEqual(path, "/api/Financial/ClientFinancials")
        self.assertEqual(payload["fullYearForecast"], 1250)
        self.assertEqual(payload["clientName"], "Acme")
        self.assertEqual(payload["comments"], "")
        self.assertEqual(payload["updatedBy"], "u1")

    def test_save_client_financial_keeps_given_forecast(self):
        self.client.post.return_value = envelope({"key": "f1"})

        self.backend.save_client_financial(
            "c1", "Acme", "2025", "TAP", {"fullYearForecast": 0, "months": {"a": 5}}, "u1"
        )

        payload = self.client.post.call_args.args[1]
        self.assertEqual(payload["fullYearForecast"], 0)
        self.assertEqual(
            payload["history"],
            {"yearMinus1": 0, "yearMinus2": 0, "yearMinus3": 0, "currentYearYTD": 0},
        )

    def test_budgets(self):
        self.client.get.return_value = envelope([{"id": 1, "budgetAmount": 10}])
        self.client.post.return_value = envelope({"id": 5})

        self.assertEqual(self.backend.get_budgets("2024/2025")[0]["id"], 1)
        self.client.get.assert_called_once_with(
            "/api/Financial/Budgets", {"financialYear": "2024/2025"}
        )

        self.assertEqual(self.backend.save_budget("u1", "TAP", "2024/2025", "1500.5", "admin"), 5)
        self.assertEqual(self.client.post.call_args.args[1]["budgetAmount"], 1500.5)

    def test_invalid_budget_amount_is_zero(self):
        self.client.post.return_value = envelope({"id": 5})
        self.backend.save_budget("u1", "TAP", "2025", "abc", "admin")
        self.assertEqual(self.client.post.call_args.args[1]["budgetAmount"], 0.0)

    def test_financial_year_settings_fallback(self):
        self.client.get.side_effect = ApiError("Server error", 500)
        with self.assertLogs("crm_api.backend", level="ERROR"):
            settings = self.backend.get_financial_year_settings("t1")
        self.assertEqual(
            settings,
            {
                "currentFinancialYear": "2024/2025",
                "financialYearStart": "March",
                "financialYearEnd": "February",
                "reportingMonth": "February",
                "tenantId": "t1",
            },
        )

    def test_save_financial_year_settings(self):
        self.client.put.return_value = envelope(None)
        self.backend.save_financial_year_settings({"financialYearStart": "July"}, "t1")
        self.client.put.assert_called_once_with(
            "/api/Financial/Settings/FinancialYear",
            {"financialYearStart": "July", "tenantId": "t1"},
        )

    def test_calculate_financial_year_months(self):
        self.client.get.return_value = envelope(
            {
                "currentFinancialYear": "2024/2025",
                "financialYearStart": "March",
                "financialYearEnd": "February",
                "reportingMonth": "November",
            }
        )

        calendar = self.backend.calculate_financial_year_months("t1")

        self.client.get.assert_called_once_with(
            "/api/Financial/Settings/FinancialYear", {"tenantId": "t1"}
        )
        self.assertEqual(calendar.months[0].key, "mar2024")
        self.assertEqual(calendar.months[-1].key, "feb2025")
        self.assertEqual(calendar.reporting_month, 11)
        self.assertEqual(calendar.as_dict()["currentFinancialYear"], "2024/2025")

    def test_summary_by_product_line_is_a_list(self):
        tap = {"productLine": "TAP", "totalForecast": 100, "clientCount": 2}
        self.client.get.return_value = envelope({"TAP": tap})

        summary = self.backend.get_financial_summary_by_product_line("2024/2025")

        self.client.get.assert_called_once_with(
            "/api/Financial/Summary/ByProductLine", {"financialYear": "2024/2025"}
        )
        self.assertEqual(summary, [tap])

    def test_summary_by_product_line_degrades(self):
        self.client.get.side_effect = ApiError("Server error", 500)
        with self.assertLogs("crm_api.backend", level="ERROR"):
            self.assertEqual(self.backend.get_financial_summary_by_product_line(2025), [])

    def test_budget_vs_forecast(self):
        row = {"userId": "u1", "totalBudget": 100, "totalForecast": 80}
        self.client.get.return_value = envelope([row])

        self.assertEqual(self.backend.get_budget_vs_forecast("2024/2025"), [row])
        self.client.get.assert_called_once_with(
            "/api/Financial/BudgetVsForecast", {"financialYear": "2024/2025"}
        )

    def test_budget_vs_forecast_degrades(self):
        self.client.get.side_effect = ApiError("Server error", 500)
        with self.assertLogs("crm_api.backend", level="ERROR"):
            self.assertEqual(self.backend.get_budget_vs_forecast("2024/2025"), [])

    def test_upload_financial_file(self):
        self.client.upload.return_value = envelope({"imported": 12})
        file = MagicMock()

        result = self.backend.upload_financial_file(file, "2024/2025")

        self.client.upload.assert_called_once_with(
            "/api/Financial/UploadFinancialData",
            {"file": file},
            {"financialYear": "2024/2025"},
        )
        self.assertEqual(result, {"imported": 12})

    def test_upload_errors_propagate(self):
        self.client.upload.side_effect = ApiError("Bad file", 400)
        with self.assertRaises(ApiError):
            self.backend.upload_financial_file(MagicMock(), "2024/2025")


class ReferenceOperationTests(RestBackendTestCase):
    def test_pipeline_statuses_sorted(self):
        self.client.get.return_value = envelope(
            [{"id": "b", "order": 2}, {"id": "a", "order": 1}]
        )
        self.assertEqual(
            [s["id"] for s in self.backend.get_pipeline_statuses("t1")], ["a", "b"]
        )
        self.client.get.assert_called_once_with(
            "/api/PipelineStatus/GetList", {"tenantId": "t1"}
        )

    def test_pipeline_statuses_default_when_empty_or_failing(self):
        self.client.get.return_value = envelope([])
        self.assertEqual(self.backend.get_pipeline_statuses(), DEFAULT_PIPELINE_STATUSES)

        self.client.get.side_effect = ApiError("Server error", 500)
        with self.assertLogs("crm_api.backend", level="ERROR"):
            self.assertEqual(
                self.backend.get_pipeline_statuses(), DEFAULT_PIPELINE_STATUSES
            )

    def test_save_pipeline_statuses(self):
        self.client.post.return_value = envelope(None)
        statuses = [{"id": "a", "order": 1}]
        self.assertTrue(self.backend.save_pipeline_statuses(statuses, "t1"))
        self.client.post.assert_called_once_with(
            "/api/PipelineStatus/ReorderPipelineStatuses",
            {"statuses": statuses, "tenantId": "t1"},
        )

    def test_reference_lists(self):
        self.client.get.return_value = envelope([{"id": 1, "key": "p1"}])
        self.assertEqual(self.backend.get_skills_partners()[0]["id"], "p1")
        self.assertEqual(self.backend.get_product_lines()[0]["id"], "p1")

    def test_users_and_tenants(self):
        self.client.get.return_value = envelope({"id": 3, "key": "u3"})
        self.assertEqual(self.backend.get_user("u3")["_apiId"], 3)
        self.client.get.assert_called_with("/api/User/GetByKey?userKey=u3")

        self.client.get.return_value = envelope([{"id": 1, "key": "t1"}])
        self.assertEqual(self.backend.get_tenants()[0]["id"], "t1")

        self.client.get.side_effect = NotFoundError("Missing", 404)
        self.assertIsNone(self.backend.get_tenant("t9"))
        self.assertIsNone(self.backend.get_user("u9"))


if __name__ == "__main__":
    unittest.main()
