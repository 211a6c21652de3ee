"""
Shared fixtures for the tagline test suite.
"""

from __future__ import annotations

import io

from PIL import Image

from tagline.config import Settings

TEST_PASSWORD = "correct horse battery staple"
TEST_TOKEN_SECRET = "test-signing-secret-0123456789abcdef"


def make_settings(**overrides) -> Settings:
    values = {
        "password": TEST_PASSWORD,
        "token_secret": TEST_TOKEN_SECRET,
        "use_in_memory_backends": True,
        "storage_provider": "memory",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def png_bytes(color: str = "red", size: tuple[int, int] = (4, 4)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def jpeg_bytes(color: str = "blue", size: tuple[int, int] = (8, 8)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="JPEG")
    return buffer.getvalue()
