"""
Unwrapping of the standard API response envelope and paginated payloads.

Envelope shape:
    {"result": T, "isError": bool, "errorMessage": str, "message": str,
     "statusCode": int}

Paginated `result` is either a bare list or:
    {"items": [...], "totalCount": int, "page": int, "pageSize": int,
     "totalPages": int}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from crm_api.errors import (
    EMPTY_RESPONSE_MESSAGE,
    GENERIC_ERROR_MESSAGE,
    api_error,
)


@dataclass
class Pagination:
    total: int
    page: int = 1
    page_size: int = 0
    total_pages: int = 1

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "page": self.page,
            "pageSize": self.page_size,
            "totalPages": self.total_pages,
        }


@dataclass
class PagedResult:
    data: list = field(default_factory=list)
    pagination: Pagination = field(default_factory=lambda: Pagination(total=0))

    def as_dict(self) -> dict:
        return {"data": self.data, "pagination": self.pagination.as_dict()}


def _is_envelope(response: Any) -> bool:
    return isinstance(response, dict) and "isError" in response


def _error_message(response: dict) -> str:
    return (
        response.get("errorMessage") or response.get("message") or GENERIC_ERROR_MESSAGE
    )


def unwrap(response: Any) -> Any:
    """
    Return the envelope's result or raise its error.

    Responses without the envelope shape are returned unchanged.

    Raises:
        ApiError: the response is empty (500) or flags `isError`.
    """
    if response is None:
        raise api_error(EMPTY_RESPONSE_MESSAGE, 500)

    if not _is_envelope(response):
        return response

    if response["isError"]:
        raise api_error(
            _error_message(response),
            response.get("statusCode") or 400,
            response.get("errorCode"),
        )

    return response.get("result")


def unwrap_paged(response: Any) -> PagedResult:
    result = unwrap(response)

    if result is None:
        return PagedResult()

    if isinstance(result, list):
        return PagedResult(
            data=result,
            pagination=Pagination(
                total=len(result), page=1, page_size=len(result), total_pages=1
            ),
        )

    if not isinstance(result, dict):
        return PagedResult()

    items = result.get("items") or []
    total = result.get("totalCount")
    return PagedResult(
        data=items,
        pagination=Pagination(
            total=len(items) if total is None else total,
            page=result.get("page") or 1,
            page_size=result.get("pageSize") or len(items),
            total_pages=result.get("totalPages") or 1,
        ),
    )


def extract_items(response: Any) -> list:
    """Return the item list from a bare-list or paginated result."""
    result = unwrap(response)
    if isinstance(result, list):
        return result
    if isinstance(result, dict) and isinstance(result.get("items"), list):
        return result["items"]
    return []


def is_success_response(response: Any) -> bool:
    if response is None:
        return False
    if _is_envelope(response):
        return not response["isError"]
    return True


def extract_error_message(response: Any) -> Optional[str]:
    if _is_envelope(response) and response["isError"]:
        return _error_message(response)
    return None
