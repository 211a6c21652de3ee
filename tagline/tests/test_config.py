import os
import tempfile
import unittest
from unittest.mock import patch

from pydantic import ValidationError

from tagline import dependencies
from tagline.config import Settings
from tagline.errors import ConfigurationError
from tagline.storage import FilesystemBlobStore, InMemoryBlobStore, NullBlobStore, S3BlobStore
from tagline.tests.helpers import make_settings


class SettingsTests(unittest.TestCase):
    def test_secrets_are_required(self):
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ValidationError):
                Settings(_env_file=None)

    def test_reads_environment(self):
        env = {
            "TAGLINE_PASSWORD": "pw",
            "TAGLINE_TOKEN_SECRET": "secret",
            "TAGLINE_STORAGE_PROVIDER": "filesystem",
            "TAGLINE_STORAGE_ROOT": "/srv/photos",
            "AWS_ACCESS_KEY_ID": "AKIA",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings(_env_file=None)
        self.assertEqual(settings.password.get_secret_value(), "pw")
        self.assertEqual(settings.storage_provider, "filesystem")
        self.assertEqual(settings.storage_root, "/srv/photos")
        self.assertEqual(settings.s3_access_key_id, "AKIA")
        self.assertNotIn("pw", repr(settings))

    def test_access_token_ttl_bounds(self):
        with self.assertRaises(ValidationError):
            make_settings(access_token_ttl_minutes=5)
        with self.assertRaises(ValidationError):
            make_settings(access_token_ttl_minutes=120)

    def test_unknown_provider_rejected(self):
        with self.assertRaises(ValidationError):
            make_settings(storage_provider="dropbox")

    def test_settings_are_immutable(self):
        settings = make_settings()
        with self.assertRaises(ValidationError):
            settings.storage_provider = "null"


class DependencyWiringTests(unittest.TestCase):
    def tearDown(self):
        dependencies.reset_dependencies()

    def test_create_blob_store_per_provider(self):
        self.assertIsInstance(dependencies.create_blob_store(make_settings()), InMemoryBlobStore)
        self.assertIsInstance(
            dependencies.create_blob_store(make_settings(storage_provider="null")), NullBlobStore
        )
        with tempfile.TemporaryDirectory() as root:
            store = dependencies.create_blob_store(
                make_settings(storage_provider="filesystem", storage_root=root)
            )
            self.assertIsInstance(store, FilesystemBlobStore)
        store = dependencies.create_blob_store(
            make_settings(
                storage_provider="s3",
                s3_bucket="photos",
                s3_region="us-east-1",
                s3_access_key_id="testing",
                s3_secret_access_key="testing",
            )
        )
        self.assertIsInstance(store, S3BlobStore)

    def test_provider_location_is_required(self):
        with self.assertRaises(ConfigurationError):
            dependencies.create_blob_store(make_settings(storage_provider="filesystem"))
        with self.assertRaises(ConfigurationError):
            dependencies.create_blob_store(make_settings(storage_provider="s3"))

    def test_persistent_backends_need_addresses(self):
        dependencies.configure(make_settings(use_in_memory_backends=False))
        with self.assertRaises(ConfigurationError):
            dependencies.get_metadata_store()
        with self.assertRaises(ConfigurationError):
            dependencies.get_token_store()

    def test_rescan_size_cap_comes_from_settings(self):
        dependencies.configure(make_settings(max_image_bytes=1024))
        self.assertEqual(dependencies.get_reconciler().max_image_bytes, 1024)
        with self.assertRaises(ValidationError):
            make_settings(max_image_bytes=0)

    def test_components_are_singletons(self):
        dependencies.configure(make_settings())
        self.assertIs(dependencies.get_photo_library(), dependencies.get_photo_library())
        self.assertIs(
            dependencies.get_reconciler().library, dependencies.get_photo_library()
        )
        self.assertIs(
            dependencies.get_auth_service().token_store, dependencies.get_token_store()
        )


if __name__ == "__main__":
    unittest.main()
