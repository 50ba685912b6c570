"""Service layer for tagging operations."""

from .errors import (
    InvalidResourceKind,
    InvalidResponseKind,
    InvalidViaKind,
    TaggingError,
    UnregisteredKind,
)
from .query import QueryConditions
from .registry import Resource, ResourceKind, ResourceRegistry
from .service import TaggingService
from .settings import ConsistencyMode, TaggingSettings

__all__ = [
    "ConsistencyMode",
    "InvalidResourceKind",
    "InvalidResponseKind",
    "InvalidViaKind",
    "QueryConditions",
    "Resource",
    "ResourceKind",
    "ResourceRegistry",
    "TaggingError",
    "TaggingService",
    "TaggingSettings",
    "UnregisteredKind",
]
