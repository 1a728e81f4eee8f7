"""
Endpoint registry for the CRM REST API.

Each table maps a logical operation name to a URL template. Templates with
placeholders are rendered through `endpoint()`, which URL-quotes the values.
"""

from __future__ import annotations

import string
from typing import Any, Mapping, Optional
from urllib.parse import quote, urlencode

USER = {
    # Auth
    "LOGIN": "/api/User/Login",
    "REFRESH_TOKEN": "/api/User/RefreshToken",
    "REGISTER": "/api/User/Register",
    "VALIDATE_REGISTER": "/api/User/ValidateRegister",
    "SEND_OTP": "/api/User/SendOtp",
    "VALIDATE_OTP": "/api/User/ValidateOtp",
    "FORGET_PASSWORD": "/api/User/ForgetPassword",
    "CHANGE_PASSWORD": "/api/User/ChangePassword",
    "LOGOUT": "/api/User/LogOut",
    "USER_DETAIL": "/api/User/UserDetail",
    "UPDATE_PROFILE": "/api/User/UpdateUserProfile",
    "GET_PERMISSIONS": "/api/User/GetUserPermissions",
    "VALIDATE_INVITE": "/api/User/ValidateInvite",
    # User management
    "LIST": "/api/User/GetList",
    "GET_BY_ID": "/api/User/GetById?userId={user_id}",
    "GET_BY_KEY": "/api/User/GetByKey?userKey={user_key}",
    "GET_CURRENT": "/api/User/GetCurrentUser",
    "CREATE": "/api/User/CreateUser",
    "UPDATE": "/api/User/UpdateUser?userId={user_id}",
    "DELETE": "/api/User/Delete?userId={user_id}",
    "SOFT_DELETE": "/api/User/SoftDelete?userId={user_id}",
    "UPDATE_ROLE": "/api/User/UpdateUserRole",
    "UPDATE_MANAGER": "/api/User/UpdateUserManager",
    "GET_DIRECT_REPORTS": "/api/User/GetDirectReports?userId={user_id}",
    "GET_HIERARCHY": "/api/User/GetUserHierarchy?userId={user_id}",
    "GET_TEAM_MEMBERS": "/api/User/GetTeamMembers?userId={user_id}",
    "BATCH_CREATE": "/api/User/BatchCreate",
}

CLIENT = {
    "LIST": "/api/Client/GetList",
    "GET_BY_ID": "/api/Client/GetById?clientId={client_id}",
    "GET_BY_KEY": "/api/Client/GetByKey?clientKey={client_key}",
    "CREATE": "/api/Client/CreateClient",
    "UPDATE": "/api/Client/UpdateClient?clientId={client_id}",
    "DELETE": "/api/Client/Delete?clientId={client_id}",
    "SOFT_DELETE": "/api/Client/SoftDelete?clientId={client_id}",
    "SEARCH": "/api/Client/GetList",
    "ASSIGN_SALESPERSON": "/api/Client/AssignSalesPerson?clientId={client_id}",
    "ASSIGN_SKILLS_PARTNER": "/api/Client/AssignSkillsPartner?clientId={client_id}",
    "UPDATE_PIPELINE_STATUS": "/api/Client/UpdatePipelineStatus?clientId={client_id}",
    "GET_ACTIVITIES": "/api/Client/GetClientActivities?clientId={client_id}",
    "GET_INTERACTIONS": "/api/Client/GetClientInteractions?clientId={client_id}",
    "CREATE_INTERACTION": "/api/Client/CreateInteraction?clientId={client_id}",
    "SET_FOLLOW_UP": "/api/Client/SetFollowUp?clientId={client_id}",
    "CLEAR_FOLLOW_UP": "/api/Client/ClearFollowUp?clientId={client_id}",
    "WITHOUT_FOLLOW_UP": "/api/Client/GetClientsWithoutFollowUp",
    "WITH_OVERDUE_FOLLOW_UP": "/api/Client/GetClientsWithOverdueFollowUp",
    "GET_PRODUCTS": "/api/Client/GetClientProducts?clientId={client_id}",
    "ADD_PRODUCT": "/api/Client/AddProduct?clientId={client_id}",
    "UPDATE_PRODUCT": (
        "/api/Client/UpdateClientProduct?clientId={client_id}"
        "&clientProductId={client_product_id}"
    ),
    "REMOVE_PRODUCT": (
        "/api/Client/RemoveProduct?clientId={client_id}"
        "&clientProductId={client_product_id}"
    ),
}

DEAL = {
    "LIST": "/api/Deal/GetList",
    "GET_BY_ID": "/api/Deal/GetById?dealId={deal_id}",
    "GET_BY_KEY": "/api/Deal/GetByKey?dealKey={deal_key}",
    "CREATE": "/api/Deal/CreateDeal",
    "UPDATE": "/api/Deal/UpdateDeal?dealId={deal_id}",
    "DELETE": "/api/Deal/Delete?dealId={deal_id}",
    "SOFT_DELETE": "/api/Deal/SoftDelete?dealId={deal_id}",
    "UPDATE_STAGE": "/api/Deal/UpdateDealStage?dealId={deal_id}",
    "GET_PIPELINE_KANBAN": "/api/Deal/GetPipelineKanban",
}

TASK = {
    "LIST": "/api/Task/GetList",
    "GET_BY_ID": "/api/Task/GetById?taskId={task_id}",
    "GET_BY_KEY": "/api/Task/GetByKey?taskKey={task_key}",
    "CREATE": "/api/Task/CreateTask",
    "UPDATE": "/api/Task/UpdateTask?taskId={task_id}",
    "DELETE": "/api/Task/Delete?taskId={task_id}",
    "SOFT_DELETE": "/api/Task/SoftDelete?taskId={task_id}",
    "COMPLETE": "/api/Task/CompleteTask?taskId={task_id}",
    "GET_STATS": "/api/Task/GetTaskStats",
}

MESSAGE = {
    "LIST": "/api/Message/GetList",
    "GET_BY_KEY": "/api/Message/GetById?messageKey={message_key}",
    "SEND": "/api/Message/SendMessage",
    "MARK_AS_READ": "/api/Message/MarkAsRead?messageKey={message_key}",
    "ARCHIVE": "/api/Message/ArchiveMessage?messageKey={message_key}",
    "GET_UNREAD_COUNT": "/api/Message/GetUnreadCount",
}

ROLE = {
    "LIST": "/api/Role/GetList",
    "GET_BY_ID": "/api/Role/GetById?roleId={role_id}",
    "GET_BY_KEY": "/api/Role/GetByKey?roleKey={role_key}",
    "CREATE": "/api/Role/CreateRole",
    "UPDATE": "/api/Role/UpdateRole?roleId={role_id}",
    "DELETE": "/api/Role/Delete?roleId={role_id}",
    "SOFT_DELETE": "/api/Role/SoftDelete?roleId={role_id}",
    "GET_PERMISSIONS": "/api/Role/GetRolePermissions?roleId={role_id}",
    "UPDATE_PERMISSIONS": "/api/Role/UpdateRolePermissions?roleId={role_id}",
}

PERMISSION = {
    "LIST": "/api/Permission/GetList",
    "BY_CATEGORY": "/api/Permission/GetByCategory",
}

PRODUCT = {
    "LIST": "/api/Product/GetList",
    "GET_BY_ID": "/api/Product/GetById?productId={product_id}",
    "GET_BY_KEY": "/api/Product/GetByKey?productKey={product_key}",
    "CREATE": "/api/Product/CreateProduct",
    "UPDATE": "/api/Product/UpdateProduct?productId={product_id}",
    "ARCHIVE": "/api/Product/ArchiveProduct?productId={product_id}",
    "DELETE": "/api/Product/Delete?productId={product_id}",
    "SOFT_DELETE": "/api/Product/SoftDelete?productId={product_id}",
}

PRODUCT_LINE = {
    "LIST": "/api/ProductLine/GetList",
    "GET_BY_ID": "/api/ProductLine/GetById?productLineId={product_line_id}",
    "GET_BY_KEY": "/api/ProductLine/GetByKey?productLineKey={product_line_key}",
    "CREATE": "/api/ProductLine/CreateProductLine",
    "UPDATE": "/api/ProductLine/UpdateProductLine?productLineId={product_line_id}",
    "DELETE": "/api/ProductLine/Delete?productLineId={product_line_id}",
    "SOFT_DELETE": "/api/ProductLine/SoftDelete?productLineId={product_line_id}",
}

SKILLS_PARTNER = {
    "LIST": "/api/SkillsPartner/GetList",
    "GET_BY_KEY": "/api/SkillsPartner/GetById?skillsPartnerKey={skills_partner_key}",
    "CREATE": "/api/SkillsPartner/CreateSkillsPartner",
    "UPDATE": (
        "/api/SkillsPartner/UpdateSkillsPartner?skillsPartnerKey={skills_partner_key}"
    ),
    "DELETE": "/api/SkillsPartner/Delete?skillsPartnerKey={skills_partner_key}",
    "SOFT_DELETE": "/api/SkillsPartner/SoftDelete?skillsPartnerKey={skills_partner_key}",
}

SETA = {
    "LIST": "/api/Seta/GetList",
    "GET_BY_KEY": "/api/Seta/GetById?setaKey={seta_key}",
    "CREATE": "/api/Seta/CreateSeta",
    "UPDATE": "/api/Seta/UpdateSeta?setaKey={seta_key}",
    "DELETE": "/api/Seta/Delete?setaKey={seta_key}",
    "SOFT_DELETE": "/api/Seta/SoftDelete?setaKey={seta_key}",
}

PIPELINE_STATUS = {
    "LIST": "/api/PipelineStatus/GetList",
    "GET_BY_KEY": "/api/PipelineStatus/GetById?pipelineStatusKey={pipeline_status_key}",
    "CREATE": "/api/PipelineStatus/CreatePipelineStatus",
    "UPDATE": (
        "/api/PipelineStatus/UpdatePipelineStatus"
        "?pipelineStatusKey={pipeline_status_key}"
    ),
    "REORDER": "/api/PipelineStatus/ReorderPipelineStatuses",
    "SETUP_DEFAULTS": "/api/PipelineStatus/SetupDefaultPipelineStatuses",
}

REPORT = {
    "DEAL_AGING": "/api/Report/GetDealAgingReport",
    "PIPELINE_ANALYTICS": "/api/Report/GetPipelineAnalytics",
    "TEAM_PERFORMANCE": "/api/Report/GetTeamPerformance",
    "FOLLOW_UP_STATS": "/api/Report/GetFollowUpStats",
    "FINANCIAL_SUMMARY": "/api/Report/GetFinancialSummary",
}

TENANT = {
    "LIST": "/api/Tenant/GetList",
    "GET_BY_ID": "/api/Tenant/GetById?tenantId={tenant_id}",
    "GET_BY_KEY": "/api/Tenant/GetByKey?tenantKey={tenant_key}",
    "CREATE": "/api/Tenant/CreateTenant",
    "UPDATE": "/api/Tenant/UpdateTenant?tenantId={tenant_id}",
    "DELETE": "/api/Tenant/Delete?tenantId={tenant_id}",
    "SOFT_DELETE": "/api/Tenant/SoftDelete?tenantId={tenant_id}",
    "GET_STATISTICS": "/api/Tenant/GetTenantStatistics?tenantId={tenant_id}",
}

SETTINGS = {
    "LIST": "/api/SystemSetting/GetList",
    "GET_BY_KEY": "/api/SystemSetting/GetByKey?settingKey={setting_key}",
    "CREATE_OR_UPDATE": (
        "/api/SystemSetting/CreateOrUpdateSystemSetting?settingKey={setting_key}"
    ),
    "GET_FINANCIAL_YEAR": "/api/SystemSetting/GetFinancialYearSettings",
    "UPDATE_FINANCIAL_YEAR": "/api/SystemSetting/UpdateFinancialYearSettings",
}

CALCULATION_TEMPLATE = {
    "LIST": "/api/CalculationTemplate/GetList",
    "GET_BY_ID": (
        "/api/CalculationTemplate/GetById?calculationTemplateId={template_id}"
    ),
    "GET_BY_KEY": (
        "/api/CalculationTemplate/GetByKey?calculationTemplateKey={template_key}"
    ),
    "CREATE": "/api/CalculationTemplate/CreateCalculationTemplate",
    "UPDATE": (
        "/api/CalculationTemplate/UpdateCalculationTemplate"
        "?calculationTemplateId={template_id}"
    ),
    "DELETE": "/api/CalculationTemplate/Delete?calculationTemplateId={template_id}",
    "SOFT_DELETE": (
        "/api/CalculationTemplate/SoftDelete?calculationTemplateId={template_id}"
    ),
    "EXECUTE": (
        "/api/CalculationTemplate/ExecuteCalculation?calculationTemplateId={template_id}"
    ),
}

TENANT_PRODUCT_CONFIG = {
    "GET_CONFIG": "/api/TenantProductConfig/GetConfig?tenantId={tenant_id}",
    "SAVE_CONFIG": "/api/TenantProductConfig/SaveConfig?tenantId={tenant_id}",
    "ENABLE_PRODUCT": "/api/TenantProductConfig/EnableProduct?tenantId={tenant_id}",
    "DISABLE_PRODUCT": "/api/TenantProductConfig/DisableProduct?tenantId={tenant_id}",
    "GET_ENABLED_PRODUCTS": (
        "/api/TenantProductConfig/GetEnabledProducts?tenantId={tenant_id}"
    ),
    "GET_ALL_PRODUCTS_STATUS": (
        "/api/TenantProductConfig/GetAllProductsStatus?tenantId={tenant_id}"
    ),
}

FINANCIAL = {
    "GET_CLIENT_FINANCIALS": "/api/Financial/GetClientFinancials?clientKey={client_key}",
    "UPDATE_CLIENT_FINANCIAL": (
        "/api/Financial/UpdateClientFinancial?clientKey={client_key}"
    ),
    "CLIENT_FINANCIALS": "/api/Financial/ClientFinancials",
    "CLIENT_FINANCIALS_BY_YEAR": "/api/Financial/ClientFinancials/ByYear",
    "BATCH_SAVE": "/api/Financial/BatchSave",
    "SUMMARY_BY_PRODUCT_LINE": "/api/Financial/Summary/ByProductLine",
    "BUDGETS": "/api/Financial/Budgets",
    "BUDGETS_BY_SALESPERSON": "/api/Financial/Budgets/BySalesperson",
    "BUDGET": "/api/Financial/Budgets/{budget_id}",
    "BUDGET_VS_FORECAST": "/api/Financial/BudgetVsForecast",
    "FINANCIAL_YEAR_SETTINGS": "/api/Financial/Settings/FinancialYear",
    "DEFAULT_PRODUCT_LINES": "/api/Financial/Settings/DefaultProductLines",
    "UPLOAD_DATA": "/api/Financial/UploadFinancialData",
    "GET_UPLOAD_HISTORY": "/api/Financial/GetUploadHistory",
    "GET_UPLOAD_BY_ID": "/api/Financial/GetUploadById?uploadId={upload_id}",
    "DELETE_UPLOAD": "/api/Financial/DeleteUpload?uploadId={upload_id}",
    "GET_DASHBOARD": "/api/Financial/GetFinancialDashboard",
}

# Reference data is served by the per-entity tables above.
REFERENCE = {
    "PIPELINE_STATUSES": PIPELINE_STATUS["LIST"],
    "SAVE_PIPELINE_STATUSES": PIPELINE_STATUS["REORDER"],
    "SKILLS_PARTNERS": SKILLS_PARTNER["LIST"],
    "SKILLS_PARTNER": SKILLS_PARTNER["GET_BY_KEY"],
    "SETAS": SETA["LIST"],
    "SETA": SETA["GET_BY_KEY"],
    "PRODUCTS": PRODUCT["LIST"],
    "PRODUCT": PRODUCT["GET_BY_KEY"],
    "PRODUCT_LINES": PRODUCT_LINE["LIST"],
    "ROLES": ROLE["LIST"],
    "ROLE": ROLE["GET_BY_KEY"],
}

_FORMATTER = string.Formatter()


def template_fields(template: str) -> set[str]:
    """Return the placeholder names used by a URL template."""
    return {
        field_name
        for _, field_name, _, _ in _FORMATTER.parse(template)
        if field_name
    }


def endpoint(table: Mapping[str, str], name: str, **params: Any) -> str:
    """
    Render a named endpoint from one of the tables.

    Raises:
        KeyError: the table has no endpoint with that name.
        ValueError: the template needs a parameter that was not supplied.
    """
    template = table[name]
    missing = template_fields(template) - params.keys()
    if missing:
        raise ValueError(
            f"Endpoint {name} requires parameters: {', '.join(sorted(missing))}"
        )
    quoted = {key: quote(str(value), safe="") for key, value in params.items()}
    return template.format(**quoted)


def _query_value(value: Any) -> Any:
    # The API expects JSON-style booleans.
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def build_url(base_url: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Append query parameters, skipping None and empty-string values."""
    filtered = {
        key: _query_value(value)
        for key, value in (params or {}).items()
        if value is not None and value != ""
    }
    if not filtered:
        return base_url
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode(filtered, doseq=True)}"


def build_pagination_params(
    page: int = 1,
    page_size: int = 20,
    sort_by: Optional[str] = None,
    sort_order: str = "asc",
) -> dict:
    params: dict = {"page": page, "pageSize": page_size}
    if sort_by:
        params["sortBy"] = sort_by
        params["sortOrder"] = sort_order
    return params
