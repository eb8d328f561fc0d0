import unittest
from types import SimpleNamespace
from unittest import mock

from fastapi import HTTPException

from studious.modules.auth.service import AuthService, TokenCache
from tests.fakes import FakeClock


def auth_client(user=None, error=None):
    supabase = mock.Mock()
    if error is not None:
        supabase.auth.get_user.side_effect = error
    else:
        supabase.auth.get_user.return_value = SimpleNamespace(user=user)
    return supabase


ADA = SimpleNamespace(id="U1", email="ada@example.com", user_metadata={"full_name": "Ada Lovelace"})


class AuthServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.cache = TokenCache(ttl_seconds=60, max_size=2, clock=self.clock.now)

    def test_resolves_identity_and_caches_it(self) -> None:
        supabase = auth_client(ADA)
        service = AuthService(supabase, self.cache)

        identity = service.get_current_user("Bearer token-1")
        again = service.get_current_user("token-1")

        self.assertEqual(identity["id"], "U1")
        self.assertEqual(identity["full_name"], "Ada Lovelace")
        self.assertIs(again, identity)
        supabase.auth.get_user.assert_called_once_with(jwt="token-1")

    def test_cache_expires(self) -> None:
        supabase = auth_client(ADA)
        service = AuthService(supabase, self.cache)
        service.get_current_user("token-1")
        self.clock.advance(60)
        service.get_current_user("token-1")
        self.assertEqual(supabase.auth.get_user.call_count, 2)

    def test_oldest_token_evicted_when_full(self) -> None:
        for token in ("a", "b", "c"):
            self.cache.put(token, {"id": token})
        self.assertEqual(len(self.cache), 2)
        self.assertIsNone(self.cache.get("a"))
        self.assertEqual(self.cache.get("c"), {"id": "c"})

    def test_rejections(self) -> None:
        cases = [
            (auth_client(user=None), "Invalid or expired token"),
            (auth_client(error=RuntimeError("JWT expired")), "Invalid or expired token"),
            (auth_client(error=RuntimeError("boom")), "Authentication failed"),
        ]
        for supabase, detail in cases:
            with self.subTest(detail=detail):
                with self.assertRaises(HTTPException) as ctx:
                    AuthService(supabase, TokenCache()).get_current_user("token-1")
                self.assertEqual(ctx.exception.status_code, 401)
                self.assertEqual(ctx.exception.detail, detail)

    def test_missing_token(self) -> None:
        with self.assertRaises(HTTPException):
            AuthService(auth_client(ADA), self.cache).get_current_user("Bearer ")


if __name__ == "__main__":
    unittest.main()
