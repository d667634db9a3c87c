"""
Pydantic schema definitions for API payloads.

Request and response bodies use camelCase on the wire.  Schemas are
kept apart from the SQL in ``services`` to decouple the API
representation from persistence.
"""
