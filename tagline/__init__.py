"""
Tagline photo backend.

A FastAPI service that exposes photos kept in an interchangeable blob store,
with optimistic-concurrency metadata updates and token-based authentication.
"""
