"""
Wire models for the engine's command protocol.

Field names are snake_case in Python and camelCase on the wire.
"""

from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Type, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from embedsearch.errors import EngineError, map_task_error
from embedsearch.protocol.filters import Filter, SortBy, render_filter, render_sort


class WireModel(BaseModel):
    """Base for models exchanged with the engine."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# TASKS
# =============================================================================


class TaskStatus(str, Enum):
    ENQUEUED = "enqueued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_STATUSES = frozenset({TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.CANCELED})


class Task(WireModel):
    """
    An asynchronous write accepted by the engine.

    Returned immediately by every write; poll with ``wait_for_task`` to
    observe completion. Enqueue responses carry ``taskUid`` while task
    lookups carry ``uid``; both populate ``uid``.
    """

    uid: int = Field(validation_alias=AliasChoices("uid", "taskUid"))
    index_uid: Optional[str] = None
    status: TaskStatus
    type: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    details: Optional[Dict[str, Any]] = None
    enqueued_at: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.SUCCEEDED

    @property
    def engine_error(self) -> Optional[EngineError]:
        return map_task_error(self.error)

    def raise_for_status(self) -> "Task":
        """Raise the mapped EngineError if the task failed."""
        if self.status == TaskStatus.FAILED:
            raise self.engine_error or EngineError("unknown_error", f"Task {self.uid} failed")
        return self


# =============================================================================
# INDEXES
# =============================================================================


class IndexInfo(WireModel):
    uid: str
    primary_key: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class IndexStats(WireModel):
    number_of_documents: int = 0
    is_indexing: bool = False
    field_distribution: Dict[str, int] = Field(default_factory=dict)


class SettingsModel(WireModel):
    """
    Base for settings sent by callers.

    Unknown keys are rejected so a misspelled setting fails loudly instead of
    producing an empty update. Engine responses go through ``from_engine``,
    which skips settings this client does not model (faceting, pagination...).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    # Field name -> model used to parse that field's nested object
    NESTED: ClassVar[Dict[str, Type["SettingsModel"]]] = {}

    @classmethod
    def from_engine(cls, data: Dict[str, Any]):
        known: Dict[str, Any] = {}
        for name, field in cls.model_fields.items():
            alias = field.alias or name
            if alias not in data:
                continue
            value = data[alias]
            nested = cls.NESTED.get(name)
            if nested is not None and isinstance(value, dict):
                value = nested.from_engine(value)
            known[name] = value
        return cls.model_validate(known)


class MinWordSizeForTypos(SettingsModel):
    one_typo: Optional[int] = None
    two_typos: Optional[int] = None


class TypoTolerance(SettingsModel):
    NESTED: ClassVar[Dict[str, Type[SettingsModel]]] = {"min_word_size_for_typos": MinWordSizeForTypos}

    enabled: Optional[bool] = None
    min_word_size_for_typos: Optional[MinWordSizeForTypos] = None
    disable_on_words: Optional[List[str]] = None
    disable_on_attributes: Optional[List[str]] = None


class IndexSettings(SettingsModel):
    """Index settings. Unset fields are left untouched by an update."""

    NESTED: ClassVar[Dict[str, Type[SettingsModel]]] = {"typo_tolerance": TypoTolerance}

    searchable_attributes: Optional[List[str]] = None
    displayed_attributes: Optional[List[str]] = None
    filterable_attributes: Optional[List[str]] = None
    sortable_attributes: Optional[List[str]] = None
    ranking_rules: Optional[List[str]] = None
    stop_words: Optional[List[str]] = None
    synonyms: Optional[Dict[str, List[str]]] = None
    distinct_attribute: Optional[str] = None
    typo_tolerance: Optional[TypoTolerance] = None


class DocumentsPage(WireModel):
    results: List[Dict[str, Any]] = Field(default_factory=list)
    offset: int = 0
    limit: int = 0
    total: int = 0


class IndexDump(BaseModel):
    """Portable copy of one index: primary key, settings and every document."""

    primary_key: Optional[str] = None
    settings: IndexSettings = Field(default_factory=IndexSettings)
    documents: List[Dict[str, Any]] = Field(default_factory=list)


# =============================================================================
# SEARCH
# =============================================================================


class MatchingStrategy(str, Enum):
    LAST = "last"
    ALL = "all"
    FREQUENCY = "frequency"


class Query(WireModel):
    """
    A search request.

    ``q=None`` matches every document. ``limit=None`` leaves the page size to
    the engine; the value it used is reported back in ``SearchResult.limit``.
    Every hit carries its relevance score unless ``show_ranking_score=False``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid", arbitrary_types_allowed=True
    )

    q: Optional[str] = None
    offset: int = Field(0, ge=0, strict=True)
    limit: Optional[int] = Field(None, ge=0, strict=True)
    filter: Optional[Union[str, Filter, List[Any]]] = None
    sort: Optional[List[Union[str, SortBy]]] = None
    facets: Optional[List[str]] = None
    attributes_to_retrieve: Optional[List[str]] = None
    attributes_to_highlight: Optional[List[str]] = None
    attributes_to_crop: Optional[List[str]] = None
    crop_length: Optional[int] = Field(None, ge=0)
    crop_marker: Optional[str] = None
    highlight_pre_tag: Optional[str] = None
    highlight_post_tag: Optional[str] = None
    show_matches_position: Optional[bool] = None
    show_ranking_score: bool = True
    matching_strategy: Optional[MatchingStrategy] = None
    attributes_to_search_on: Optional[List[str]] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = self.model_dump(
            mode="json", by_alias=True, exclude_none=True, exclude={"filter", "sort"}
        )
        if self.filter is not None:
            payload["filter"] = render_filter(self.filter)
        if self.sort:
            payload["sort"] = render_sort(self.sort)
        return payload


# Keys the engine adds to a hit next to the document's own fields
HIT_METADATA_KEYS = ("_rankingScore", "_rankingScoreDetails", "_matchesPosition", "_formatted")


class SearchHit(BaseModel):
    model_config = ConfigDict(frozen=True)

    document: Dict[str, Any]
    ranking_score: Optional[float] = None
    matches_position: Optional[Dict[str, Any]] = None
    formatted: Optional[Dict[str, Any]] = None

    @classmethod
    def from_wire(cls, hit: Dict[str, Any]) -> "SearchHit":
        document = {k: v for k, v in hit.items() if k not in HIT_METADATA_KEYS}
        return cls(
            document=document,
            ranking_score=hit.get("_rankingScore"),
            matches_position=hit.get("_matchesPosition"),
            formatted=hit.get("_formatted"),
        )


class SearchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    hits: List[SearchHit] = Field(default_factory=list)
    query: Optional[str] = None
    processing_time_ms: int = 0
    offset: int = 0
    limit: int = 0
    estimated_total_hits: int = 0
    facet_distribution: Optional[Dict[str, Dict[str, int]]] = None
    facet_stats: Optional[Dict[str, Dict[str, float]]] = None

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "SearchResult":
        return cls(
            hits=[SearchHit.from_wire(h) for h in data.get("hits", [])],
            query=data.get("query"),
            processing_time_ms=data.get("processingTimeMs", 0),
            offset=data.get("offset", 0),
            limit=data.get("limit", 0),
            estimated_total_hits=data.get("estimatedTotalHits", data.get("totalHits", 0)),
            facet_distribution=data.get("facetDistribution"),
            facet_stats=data.get("facetStats"),
        )

    @property
    def documents(self) -> List[Dict[str, Any]]:
        return [hit.document for hit in self.hits]
