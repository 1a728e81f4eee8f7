"""
Dependency wiring: one token store, API client, auth service and backend per
process, chosen from settings.
"""

from __future__ import annotations

import logging

from crm_api.auth import AuthService
from crm_api.backend import CrmBackend
from crm_api.config import Settings, get_settings
from crm_api.http_client import ApiClient
from crm_api.rest_backend import RestCrmBackend
from crm_api.token_storage import (
    FileTokenScope,
    InMemoryTokenScope,
    RedisTokenScope,
    TokenStore,
)

logger = logging.getLogger(__name__)

_token_store: TokenStore | None = None
_api_client: ApiClient | None = None
_auth_service: AuthService | None = None
_backend: CrmBackend | None = None


def create_token_store(settings: Settings) -> TokenStore:
    if settings.use_in_memory_token_storage:
        durable = InMemoryTokenScope()
    elif settings.redis_url:
        durable = RedisTokenScope(
            url=settings.redis_url, hash_key=settings.redis_token_prefix
        )
    else:
        durable = FileTokenScope(settings.token_file_path)
    return TokenStore(session_scope=InMemoryTokenScope(), durable_scope=durable)


def create_api_client(settings: Settings, token_store: TokenStore) -> ApiClient:
    return ApiClient(
        settings.api_base_url, token_store, timeout=settings.request_timeout
    )


def create_backend(
    settings: Settings, *, api_client: ApiClient | None = None
) -> CrmBackend:
    """
    Build the backend named by `settings.use_firestore`.

    The Firestore module is imported only on that branch so REST deployments
    never need the Firestore libraries at runtime.
    """
    if settings.use_firestore:
        from crm_api.firestore_backend import (
            FirestoreCrmBackend,
            default_client_factory,
        )

        logger.info("Using Firestore backend")
        return FirestoreCrmBackend(
            default_client_factory(
                settings.firestore_project, settings.firestore_database
            ),
            degrade_list_failures=settings.degrade_list_failures,
        )

    if api_client is None:
        api_client = create_api_client(settings, create_token_store(settings))
    logger.info("Using REST backend at %s", settings.api_base_url)
    return RestCrmBackend(
        api_client, degrade_list_failures=settings.degrade_list_failures
    )


def get_token_store() -> TokenStore:
    global _token_store
    if _token_store:
        return _token_store

    _token_store = create_token_store(get_settings())
    return _token_store


def get_api_client() -> ApiClient:
    """
    Return a singleton API client so the refresh lock and logout listeners
    are shared by every caller.
    """
    global _api_client
    if _api_client:
        return _api_client

    _api_client = create_api_client(get_settings(), get_token_store())
    return _api_client


def get_auth_service() -> AuthService:
    global _auth_service
    if _auth_service:
        return _auth_service

    _auth_service = AuthService(get_api_client(), get_token_store())
    return _auth_service


def get_backend() -> CrmBackend:
    """
    Return the process-wide backend. The choice is made once; changing
    settings afterwards has no effect until `reset()`.
    """
    global _backend
    if _backend:
        return _backend

    settings = get_settings()
    if settings.use_firestore:
        _backend = create_backend(settings)
    else:
        _backend = create_backend(settings, api_client=get_api_client())
    return _backend


def reset() -> None:
    """Forget every singleton and the cached settings."""
    global _token_store, _api_client, _auth_service, _backend
    _token_store = None
    _api_client = None
    _auth_service = None
    _backend = None
    get_settings.cache_clear()
