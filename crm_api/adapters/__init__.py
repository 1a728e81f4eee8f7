"""
Adapters between the API's wire shapes and the shapes callers work with.
"""

from crm_api.adapters.ids import (
    API_ID_FIELD,
    decode_timestamp,
    denormalize_entity,
    get_api_id,
    is_guid,
    normalize_dates,
    normalize_entities,
    normalize_entity,
    serialize_dates,
)
from crm_api.adapters.response import (
    PagedResult,
    Pagination,
    extract_error_message,
    extract_items,
    is_success_response,
    unwrap,
    unwrap_paged,
)
