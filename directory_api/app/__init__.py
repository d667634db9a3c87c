"""
Application package initializer.

This package contains the main entrypoint for the API and all of its
submodules.  Each domain (ratings, reviews, listings, users) exposes a
router defined in ``api/v1/endpoints``; business rules live in
``services`` and cross-cutting concerns (configuration, database,
security, rate limiting, caching, errors) in ``core``.
"""

from .main import app  # noqa: F401
