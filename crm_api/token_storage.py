"""
Token storage for the access/refresh token pair.

Tokens live in one of two scopes: a session scope that dies with the process
and a durable scope (JSON file or Redis) used when the user asked to be
remembered. A marker in the durable scope records which one is current.
"""

from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis

ACCESS_TOKEN_KEY = "crm_access_token"
REFRESH_TOKEN_KEY = "crm_refresh_token"
STORAGE_TYPE_KEY = "crm_storage_type"

DURABLE_SCOPE = "local"
SESSION_SCOPE = "session"


class TokenScope(Protocol):
    """Key/value operations the token store needs from a storage scope."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


@dataclass
class InMemoryTokenScope:
    """Process-lifetime scope. Also the test double for durable scopes."""

    values: dict[str, str] = field(default_factory=dict)

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def remove(self, key: str) -> None:
        self.values.pop(key, None)


@dataclass
class FileTokenScope:
    """Durable scope persisted as a small JSON document on disk."""

    path: str

    def __post_init__(self):
        self.path = os.path.expanduser(self.path)
        self._lock = threading.Lock()

    def _load(self) -> dict:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            # A truncated file holds no usable tokens.
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)


@dataclass
class RedisTokenScope:
    """Durable scope stored in a Redis hash."""

    url: str
    hash_key: str = "crm:tokens"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def get(self, key: str) -> Optional[str]:
        value = self.client.hget(self.hash_key, key)
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else value

    def set(self, key: str, value: str) -> None:
        self.client.hset(self.hash_key, key, value)

    def remove(self, key: str) -> None:
        self.client.hdel(self.hash_key, key)


class TokenStore:
    """Reads and writes the current token pair across both scopes."""

    def __init__(self, session_scope: TokenScope, durable_scope: TokenScope):
        self.session_scope = session_scope
        self.durable_scope = durable_scope

    def _current_scope(self) -> TokenScope:
        if self.durable_scope.get(STORAGE_TYPE_KEY) == DURABLE_SCOPE:
            return self.durable_scope
        return self.session_scope

    def set_tokens(
        self, access_token: str, refresh_token: str, remember: bool = False
    ) -> None:
        if remember:
            target, other = self.durable_scope, self.session_scope
        else:
            target, other = self.session_scope, self.durable_scope
        self.durable_scope.set(
            STORAGE_TYPE_KEY, DURABLE_SCOPE if remember else SESSION_SCOPE
        )
        target.set(ACCESS_TOKEN_KEY, access_token)
        target.set(REFRESH_TOKEN_KEY, refresh_token)
        # Only one pair is current; drop whatever the other scope still holds.
        other.remove(ACCESS_TOKEN_KEY)
        other.remove(REFRESH_TOKEN_KEY)

    def update_access_token(self, access_token: str) -> None:
        self._current_scope().set(ACCESS_TOKEN_KEY, access_token)

    def get_access_token(self) -> Optional[str]:
        return self.session_scope.get(ACCESS_TOKEN_KEY) or self.durable_scope.get(
            ACCESS_TOKEN_KEY
        )

    def get_refresh_token(self) -> Optional[str]:
        return self.session_scope.get(REFRESH_TOKEN_KEY) or self.durable_scope.get(
            REFRESH_TOKEN_KEY
        )

    def is_remembered(self) -> bool:
        return self.durable_scope.get(STORAGE_TYPE_KEY) == DURABLE_SCOPE

    def clear_tokens(self) -> None:
        for scope in (self.session_scope, self.durable_scope):
            scope.remove(ACCESS_TOKEN_KEY)
            scope.remove(REFRESH_TOKEN_KEY)
        self.durable_scope.remove(STORAGE_TYPE_KEY)

    def has_tokens(self) -> bool:
        return bool(self.get_access_token()) and bool(self.get_refresh_token())
