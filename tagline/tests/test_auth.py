import unittest
from datetime import datetime, timedelta, timezone

from jose import jwt

from tagline.auth import AuthService
from tagline.errors import UnauthorizedError
from tagline.tests.helpers import TEST_PASSWORD, TEST_TOKEN_SECRET, make_settings
from tagline.tokens import InMemoryTokenStore


class AuthServiceTests(unittest.TestCase):
    def setUp(self):
        self.offset = timedelta(0)
        self.store = InMemoryTokenStore()
        self.auth = self._make_auth()

    def _make_auth(self, **overrides):
        options = {
            "password": TEST_PASSWORD,
            "token_secret": TEST_TOKEN_SECRET,
            "token_store": self.store,
            "clock": lambda: datetime.now(timezone.utc) + self.offset,
        }
        options.update(overrides)
        return AuthService(**options)

    def test_verify_password(self):
        self.assertTrue(self.auth.verify_password(TEST_PASSWORD))
        self.assertFalse(self.auth.verify_password(TEST_PASSWORD + " "))
        self.assertFalse(self.auth.verify_password(""))

    def test_login_issues_tokens(self):
        pair = self.auth.login(TEST_PASSWORD)
        claims = self.auth.verify_access_token(pair.access_token)
        self.assertEqual(claims["sub"], "owner")
        self.assertEqual(pair.token_type, "bearer")
        self.assertTrue(self.store.get(pair.refresh_token).is_active(datetime.now(timezone.utc)))

    def test_login_with_wrong_password(self):
        with self.assertRaises(UnauthorizedError) as ctx:
            self.auth.login("wrong")
        self.assertEqual(ctx.exception.detail, "Invalid credentials")
        self.assertEqual(self.store.records, {})

    def test_access_token_expired_by_one_second(self):
        token = self.auth.create_access_token(expires_delta=timedelta(seconds=-1))
        with self.assertRaises(UnauthorizedError):
            self.auth.verify_access_token(token)

    def test_access_token_with_bad_signature(self):
        token = jwt.encode(
            {"sub": "owner", "type": "access", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            "some-other-secret",
            algorithm="HS256",
        )
        with self.assertRaises(UnauthorizedError):
            self.auth.verify_access_token(token)

    def test_malformed_and_wrong_type_tokens(self):
        not_access = jwt.encode(
            {"sub": "owner", "type": "refresh", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            TEST_TOKEN_SECRET,
            algorithm="HS256",
        )
        for token in ("garbage", "", not_access):
            with self.subTest(token=token[:10]):
                with self.assertRaises(UnauthorizedError):
                    self.auth.verify_access_token(token)

    def test_refresh_rotates_token(self):
        pair = self.auth.login(TEST_PASSWORD)
        refreshed = self.auth.refresh(pair.refresh_token)
        self.assertNotEqual(refreshed.refresh_token, pair.refresh_token)
        self.auth.verify_access_token(refreshed.access_token)
        self.assertTrue(self.store.get(pair.refresh_token).revoked)

        with self.assertRaises(UnauthorizedError) as ctx:
            self.auth.refresh(pair.refresh_token)
        self.assertEqual(ctx.exception.detail, "Invalid or expired refresh token")
        # The rotated token keeps working.
        self.auth.refresh(refreshed.refresh_token)

    def test_refresh_without_rotation_keeps_token(self):
        auth = self._make_auth(rotate_refresh_tokens=False)
        pair = auth.login(TEST_PASSWORD)
        refreshed = auth.refresh(pair.refresh_token)
        self.assertEqual(refreshed.refresh_token, pair.refresh_token)
        auth.refresh(pair.refresh_token)

    def test_revoked_refresh_token_is_rejected_before_expiry(self):
        pair = self.auth.login(TEST_PASSWORD)
        self.store.revoke(pair.refresh_token)
        with self.assertRaises(UnauthorizedError):
            self.auth.refresh(pair.refresh_token)

    def test_expired_refresh_token_is_rejected(self):
        pair = self.auth.login(TEST_PASSWORD)
        self.offset = self.auth.refresh_token_ttl + timedelta(seconds=1)
        with self.assertRaises(UnauthorizedError):
            self.auth.refresh(pair.refresh_token)

    def test_unknown_or_missing_refresh_token(self):
        for token in (None, "", "never-issued"):
            with self.subTest(token=token):
                with self.assertRaises(UnauthorizedError):
                    self.auth.refresh(token)

    def test_logout_revokes_refresh_but_not_access_token(self):
        pair = self.auth.login(TEST_PASSWORD)
        self.auth.logout(pair.refresh_token)
        with self.assertRaises(UnauthorizedError):
            self.auth.refresh(pair.refresh_token)
        self.auth.verify_access_token(pair.access_token)
        # Logging out twice is harmless.
        self.auth.logout(pair.refresh_token)

    def test_from_settings(self):
        settings = make_settings(access_token_ttl_minutes=15, rotate_refresh_tokens=False)
        auth = AuthService.from_settings(settings, self.store)
        self.assertEqual(auth.access_token_ttl, timedelta(minutes=15))
        self.assertFalse(auth.rotate_refresh_tokens)
        self.assertTrue(auth.verify_password(TEST_PASSWORD))

    def test_requires_secrets(self):
        with self.assertRaises(ValueError):
            AuthService(password="", token_secret="x", token_store=self.store)


if __name__ == "__main__":
    unittest.main()
