"""ASGI entrypoint for the tagline API (``uvicorn tagline.asgi:app``)."""

from tagline.app import create_app

app = create_app()
