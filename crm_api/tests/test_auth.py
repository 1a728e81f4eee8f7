import time
import unittest
from unittest.mock import MagicMock

import jwt

from crm_api.auth import AuthService, is_token_expired, parse_token
from crm_api.errors import ApiError
from crm_api.token_storage import InMemoryTokenScope, TokenStore


def make_token(**claims):
    payload = {
        "sub": "user-1",
        "tenantId": "tenant-1",
        "role": "salesperson",
        "sessionId": "s-1",
        "iat": int(time.time()),
        "exp": int(time.time()) + 3600,
    }
    payload.update(claims)
    return jwt.encode(payload, "test-secret", algorithm="HS256")


def envelope(result):
    return {"isError": False, "result": result}


class TokenParsingTests(unittest.TestCase):
    def test_parse_token_reads_claims_without_verification(self):
        claims = parse_token(make_token(role="admin"))
        self.assertEqual(claims["sub"], "user-1")
        self.assertEqual(claims["role"], "admin")

    def test_parse_token_invalid(self):
        self.assertIsNone(parse_token(None))
        self.assertIsNone(parse_token(""))
        with self.assertLogs("crm_api.auth", level="WARNING"):
            self.assertIsNone(parse_token("not-a-jwt"))

    def test_expiry(self):
        self.assertFalse(is_token_expired(make_token()))
        self.assertTrue(is_token_expired(make_token(exp=int(time.time()) - 10)))
        # Inside the leeway window counts as expired.
        self.assertTrue(is_token_expired(make_token(exp=int(time.time()) + 10)))
        self.assertTrue(is_token_expired(None))

    def test_token_without_exp_is_expired(self):
        token = jwt.encode({"sub": "user-1"}, "test-secret", algorithm="HS256")
        self.assertTrue(is_token_expired(token))


class AuthServiceTests(unittest.TestCase):
    def setUp(self):
        self.store = TokenStore(InMemoryTokenScope(), InMemoryTokenScope())
        self.client = MagicMock()
        self.auth = AuthService(self.client, self.store)

    def test_login_stores_tokens_and_returns_claims(self):
        access = make_token()
        self.client.post.return_value = envelope(
            {"accessToken": access, "refreshToken": "R1"}
        )

        result = self.auth.login("a@example.com", "pw", remember_me=True)

        self.client.post.assert_called_once_with(
            "/api/User/Login", {"email": "a@example.com", "password": "pw"}
        )
        self.assertEqual(result.user_id, "user-1")
        self.assertEqual(result.tenant_id, "tenant-1")
        self.assertEqual(result.role, "salesperson")
        self.assertEqual(result.tokens.access_token, access)
        self.assertEqual(result.as_dict()["user"]["email"], "a@example.com")
        self.assertEqual(self.store.get_access_token(), access)
        self.assertTrue(self.store.is_remembered())
        self.assertTrue(self.auth.is_authenticated())

    def test_login_without_tokens_fails(self):
        self.client.post.return_value = envelope({"accessToken": "A"})

        with self.assertRaises(ApiError) as ctx:
            self.auth.login("a@example.com", "pw")

        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.message, "Invalid login response - missing tokens")
        self.assertFalse(self.store.has_tokens())

    def test_login_error_envelope_propagates(self):
        self.client.post.return_value = {
            "isError": True,
            "errorMessage": "Invalid credentials",
            "statusCode": 401,
        }

        with self.assertRaises(ApiError) as ctx:
            self.auth.login("a@example.com", "bad")
        self.assertEqual(ctx.exception.message, "Invalid credentials")

    def test_logout_clears_tokens_even_when_api_fails(self):
        self.store.set_tokens(make_token(), "R1")
        self.client.get.side_effect = ApiError("Network error", 0)

        with self.assertLogs("crm_api.auth", level="WARNING"):
            self.auth.logout()

        self.client.get.assert_called_once_with("/api/User/LogOut")
        self.assertFalse(self.store.has_tokens())

    def test_logout_without_tokens_skips_api(self):
        self.auth.logout()
        self.client.get.assert_not_called()

    def test_claims_fallbacks(self):
        token = jwt.encode(
            {"userId": "user-2", "exp": int(time.time()) + 3600},
            "test-secret",
            algorithm="HS256",
        )
        self.store.set_tokens(token, "R1")
        self.assertEqual(self.auth.current_user_id(), "user-2")

    def test_not_authenticated(self):
        self.assertFalse(self.auth.is_authenticated())
        self.assertIsNone(self.auth.current_tenant_id())
        self.store.set_tokens(make_token(exp=int(time.time()) - 60), "R1")
        self.assertFalse(self.auth.is_authenticated())

    def test_explicit_refresh(self):
        self.store.set_tokens("A1", "R1", remember=True)
        self.client.post.return_value = envelope({"accessToken": "A2"})

        pair = self.auth.refresh()

        self.client.post.assert_called_once_with(
            "/api/User/RefreshToken", {"refreshToken": "R1"}
        )
        self.assertEqual((pair.access_token, pair.refresh_token), ("A2", "R1"))
        self.assertEqual(self.store.get_access_token(), "A2")
        self.assertTrue(self.store.is_remembered())

    def test_refresh_without_refresh_token(self):
        with self.assertRaises(ApiError) as ctx:
            self.auth.refresh()
        self.assertEqual(ctx.exception.status_code, 401)

    def test_account_operations_unwrap(self):
        self.client.post.return_value = envelope({"sent": True})
        self.assertEqual(self.auth.forgot_password("a@example.com"), {"sent": True})
        self.client.post.assert_called_with(
            "/api/User/ForgetPassword", {"email": "a@example.com"}
        )

        self.client.get.return_value = envelope(["clients.read"])
        self.assertEqual(self.auth.get_user_permissions(), ["clients.read"])
        self.client.get.assert_called_with("/api/User/GetUserPermissions")

        self.client.put.return_value = envelope({"name": "New"})
        self.assertEqual(self.auth.update_user_profile({"name": "New"}), {"name": "New"})


if __name__ == "__main__":
    unittest.main()
