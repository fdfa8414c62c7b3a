"""Command protocol: wire models, document codec, filters and the engine client."""

from .base import DocumentId, SearchClient
from .filters import (
    And,
    Between,
    Equal,
    Exists,
    Filter,
    GreaterThan,
    GreaterThanOrEqual,
    In,
    IsEmpty,
    IsNull,
    LessThan,
    LessThanOrEqual,
    Not,
    NotEqual,
    Or,
    SortBy,
    SortDirection,
)
from .meilisearch import MeiliSearchClient
from .models import (
    DocumentsPage,
    IndexDump,
    IndexInfo,
    IndexSettings,
    IndexStats,
    MatchingStrategy,
    MinWordSizeForTypos,
    Query,
    SearchHit,
    SearchResult,
    Task,
    TaskStatus,
    TypoTolerance,
)

__all__ = [
    # Client
    "SearchClient",
    "MeiliSearchClient",
    "DocumentId",
    # Models
    "DocumentsPage",
    "IndexDump",
    "IndexInfo",
    "IndexSettings",
    "IndexStats",
    "MatchingStrategy",
    "MinWordSizeForTypos",
    "Query",
    "SearchHit",
    "SearchResult",
    "Task",
    "TaskStatus",
    "TypoTolerance",
    # Filters
    "Filter",
    "And",
    "Or",
    "Not",
    "In",
    "Equal",
    "NotEqual",
    "GreaterThan",
    "GreaterThanOrEqual",
    "LessThan",
    "LessThanOrEqual",
    "Between",
    "Exists",
    "IsNull",
    "IsEmpty",
    "SortBy",
    "SortDirection",
]
