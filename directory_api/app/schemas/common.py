"""
Shared schema helpers.

``CamelModel`` gives every response and request model camelCase
aliases (``helpful_count`` travels as ``helpfulCount``) while still
accepting the Python field names.  ``DataResponse`` is the success
envelope ``{"data": ...}`` used by every endpoint; errors use
``{"error": {...}}`` (see ``core.errors``).
"""

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DataResponse(BaseModel, Generic[T]):
    data: T


class SuccessResult(BaseModel):
    success: bool = True
