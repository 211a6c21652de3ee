import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from redis import exceptions as redis_exceptions

from tagline.errors import BackendUnavailableError
from tagline.tokens import (
    InMemoryTokenStore,
    RedisTokenStore,
    RefreshTokenRecord,
    token_digest,
)

NOW = datetime(2025, 4, 22, 12, 0, tzinfo=timezone.utc)


def make_record(token="tok", ttl=timedelta(days=1)):
    return RefreshTokenRecord.for_token(
        token, subject="owner", issued_at=NOW, expires_at=NOW + ttl
    )


class RefreshTokenRecordTests(unittest.TestCase):
    def test_is_active(self):
        record = make_record()
        self.assertTrue(record.is_active(NOW))
        self.assertFalse(record.is_active(NOW + timedelta(days=1)))

    def test_digest_hides_token(self):
        record = make_record("secret-token")
        self.assertNotIn("secret-token", record.digest)
        self.assertEqual(record.digest, token_digest("secret-token"))


class InMemoryTokenStoreTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryTokenStore()

    def test_save_and_get(self):
        self.store.save(make_record("abc"))
        self.assertEqual(self.store.get("abc").subject, "owner")
        self.assertIsNone(self.store.get("other"))

    def test_revoke_only_succeeds_once(self):
        self.store.save(make_record("abc"))
        self.assertTrue(self.store.revoke("abc"))
        self.assertFalse(self.store.revoke("abc"))
        self.assertTrue(self.store.get("abc").revoked)

    def test_revoke_unknown_token(self):
        self.assertFalse(self.store.revoke("never-issued"))

    def test_save_drops_expired_records(self):
        now = datetime.now(timezone.utc)
        for token, expires_at in (
            ("expired", now - timedelta(seconds=1)),
            ("revoked", now + timedelta(days=1)),
        ):
            self.store.save(
                RefreshTokenRecord.for_token(
                    token, subject="owner", issued_at=now, expires_at=expires_at
                )
            )
        self.store.revoke("revoked")

        self.store.save(
            RefreshTokenRecord.for_token(
                "fresh", subject="owner", issued_at=now, expires_at=now + timedelta(days=1)
            )
        )
        self.assertIsNone(self.store.get("expired"))
        # Revoked tokens stay until they expire so reuse is still refused.
        self.assertTrue(self.store.get("revoked").revoked)
        self.assertEqual(
            set(self.store.records),
            {token_digest("revoked"), token_digest("fresh")},
        )


class RedisTokenStoreTests(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.pipeline = self.client.pipeline.return_value
        self.revoke_script = self.client.register_script.return_value
        self.store = RedisTokenStore(url="redis://localhost:6379/0", client=self.client)

    def test_save_writes_hash_with_expiry(self):
        record = make_record("abc")
        self.store.save(record)
        key = f"tagline:refresh:{record.digest}"
        self.pipeline.hset.assert_called_once_with(
            key,
            mapping={
                "subject": "owner",
                "issued_at": NOW.isoformat(),
                "expires_at": record.expires_at.isoformat(),
            },
        )
        self.pipeline.expireat.assert_called_once_with(key, record.expires_at)
        self.pipeline.execute.assert_called_once()

    def test_get_parses_hash(self):
        record = make_record("abc")
        self.client.hgetall.return_value = {
            "subject": "owner",
            "issued_at": NOW.isoformat(),
            "expires_at": record.expires_at.isoformat(),
            "revoked": "1",
        }
        loaded = self.store.get("abc")
        self.client.hgetall.assert_called_once_with(f"tagline:refresh:{record.digest}")
        self.assertEqual(loaded.expires_at, record.expires_at)
        self.assertTrue(loaded.revoked)

    def test_get_missing(self):
        self.client.hgetall.return_value = {}
        self.assertIsNone(self.store.get("abc"))

    def test_revoke_uses_script_result(self):
        self.revoke_script.return_value = 1
        self.assertTrue(self.store.revoke("abc"))
        self.revoke_script.assert_called_once_with(
            keys=[f"tagline:refresh:{token_digest('abc')}"], args=["1"]
        )
        self.revoke_script.return_value = 0
        self.assertFalse(self.store.revoke("abc"))

    def test_connection_errors_are_backend_unavailable(self):
        self.client.hgetall.side_effect = redis_exceptions.ConnectionError("down")
        self.pipeline.execute.side_effect = redis_exceptions.TimeoutError("slow")
        self.revoke_script.side_effect = redis_exceptions.ConnectionError("down")
        with self.assertRaises(BackendUnavailableError):
            self.store.get("abc")
        with self.assertRaises(BackendUnavailableError):
            self.store.save(make_record("abc"))
        with self.assertRaises(BackendUnavailableError):
            self.store.revoke("abc")


if __name__ == "__main__":
    unittest.main()
