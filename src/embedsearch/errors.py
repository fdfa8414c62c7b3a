"""
Error taxonomy for the embedded search bridge.

Every failure surfaced by embedsearch is one of:

- InstanceStartupError: the engine could not launch, bind, lock or become ready
- InstanceNotFoundError: an instance name is unknown or was destroyed
- EncodingError: a document or query value has an unsupported shape
- EngineError: the engine rejected a well-formed request
- EngineTimeoutError: startup or an explicit wait exceeded its bound
- TransportError: the loopback channel to the engine is unreachable or broken

The mapper functions at the bottom translate engine error envelopes
(``{"message", "code", "type", "link"}``) into EngineError.
"""

from enum import Enum
from typing import Any, Dict, Optional


class EmbedSearchError(Exception):
    """Base class for all embedsearch errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for structured logs and JSON responses."""
        return {"kind": self.kind, "message": self.message}


class InstanceStartupError(EmbedSearchError):
    """The supervised engine failed to launch, bind, lock or become ready."""

    BINARY_NOT_FOUND = "binary_not_found"
    BIND_FAILED = "bind_failed"
    DIRECTORY_LOCKED = "directory_locked"
    DIRECTORY_UNWRITABLE = "directory_unwritable"
    READINESS_TIMEOUT = "readiness_timeout"
    LAUNCH_FAILED = "launch_failed"
    NAME_CONFLICT = "name_conflict"

    def __init__(self, reason: str, message: str, data_directory: Optional[str] = None):
        super().__init__(message)
        self.reason = reason
        self.data_directory = data_directory

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"reason": self.reason, "data_directory": self.data_directory})
        return data

    def __str__(self) -> str:
        return f"[{self.reason}] {self.message}"


# Name used by the supervisor contract
EngineStartupError = InstanceStartupError


class InstanceNotFoundError(EmbedSearchError):
    """An instance was looked up by a name that is not live."""

    def __init__(self, name: str):
        super().__init__(f"No live search instance named '{name}'")
        self.name = name

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["name"] = self.name
        return data


class EncodingError(EmbedSearchError):
    """A document or query value cannot be represented on the wire."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Cannot encode value at '{path}': {reason}")
        self.path = path
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"path": self.path, "reason": self.reason})
        return data


class ErrorCategory(str, Enum):
    """Coarse grouping of engine error codes."""

    INVALID_REQUEST = "invalid_request"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    AUTH = "auth"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


class EngineError(EmbedSearchError):
    """The engine rejected a request (bad input, missing index, bad filter...)."""

    def __init__(
        self,
        code: str,
        message: str,
        error_type: Optional[str] = None,
        link: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.code = code
        self.error_type = error_type
        self.link = link
        self.status_code = status_code

    @property
    def category(self) -> ErrorCategory:
        return categorize(self.code, self.error_type)

    @property
    def is_not_found(self) -> bool:
        return self.category == ErrorCategory.NOT_FOUND

    @property
    def is_user_error(self) -> bool:
        """True when the caller's input was at fault rather than the engine."""
        return self.category in (
            ErrorCategory.INVALID_REQUEST,
            ErrorCategory.NOT_FOUND,
            ErrorCategory.CONFLICT,
            ErrorCategory.AUTH,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "code": self.code,
                "type": self.error_type,
                "category": self.category.value,
                "link": self.link,
                "status_code": self.status_code,
            }
        )
        return data

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class EngineTimeoutError(EmbedSearchError, TimeoutError):
    """Startup or an explicit wait exceeded its bound."""

    def __init__(self, message: str, timeout: Optional[float] = None):
        super().__init__(message)
        self.timeout = timeout

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["timeout"] = self.timeout
        return data


class StartupTimeoutError(InstanceStartupError, EngineTimeoutError):
    """The engine process started but never reported readiness."""

    def __init__(self, message: str, timeout: float, data_directory: Optional[str] = None):
        InstanceStartupError.__init__(
            self, InstanceStartupError.READINESS_TIMEOUT, message, data_directory
        )
        self.timeout = timeout

    def to_dict(self) -> Dict[str, Any]:
        data = InstanceStartupError.to_dict(self)
        data["timeout"] = self.timeout
        return data


class TransportError(EmbedSearchError, ConnectionError):
    """The channel to the engine is unreachable or broken."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["url"] = self.url
        return data


# =============================================================================
# ERROR MAPPER
# =============================================================================

_NOT_FOUND_CODES = {
    "index_not_found",
    "document_not_found",
    "task_not_found",
    "dump_not_found",
    "api_key_not_found",
}

_CONFLICT_CODES = {
    "index_already_exists",
    "index_primary_key_already_exists",
    "index_primary_key_multiple_candidates_found",
}

_INVALID_REQUEST_CODES = {
    "missing_document_id",
    "invalid_document_id",
    "invalid_document_fields",
    "missing_payload",
    "malformed_payload",
    "bad_request",
    "primary_key_inference_failed",
    "index_primary_key_no_candidate_found",
    "invalid_index_uid",
    "invalid_index_primary_key",
    "invalid_search_filter",
    "invalid_document_filter",
    "invalid_search_sort",
    "invalid_search_facets",
    "invalid_search_offset",
    "invalid_search_limit",
    "invalid_search_q",
    "invalid_settings_ranking_rules",
    "invalid_settings_filterable_attributes",
    "invalid_settings_sortable_attributes",
    "invalid_settings_searchable_attributes",
    "invalid_settings_typo_tolerance",
    "payload_too_large",
    "invalid_content_type",
    "missing_content_type",
}

_AUTH_CODES = {
    "missing_authorization_header",
    "invalid_api_key",
    "missing_master_key",
}

_TYPE_CATEGORIES = {
    "invalid_request": ErrorCategory.INVALID_REQUEST,
    "auth": ErrorCategory.AUTH,
    "internal": ErrorCategory.INTERNAL,
    "system": ErrorCategory.INTERNAL,
}


def categorize(code: str, error_type: Optional[str] = None) -> ErrorCategory:
    """Group an engine error code into an ErrorCategory."""
    if code in _NOT_FOUND_CODES:
        return ErrorCategory.NOT_FOUND
    if code in _CONFLICT_CODES:
        return ErrorCategory.CONFLICT
    if code in _AUTH_CODES:
        return ErrorCategory.AUTH
    if code in _INVALID_REQUEST_CODES:
        return ErrorCategory.INVALID_REQUEST
    if error_type in _TYPE_CATEGORIES:
        return _TYPE_CATEGORIES[error_type]
    return ErrorCategory.UNKNOWN


def map_engine_error(status_code: int, payload: Any, text: str = "") -> EngineError:
    """
    Translate an engine error response into an EngineError.

    Args:
        status_code: HTTP status of the response
        payload: Decoded JSON body, or None if the body was not JSON
        text: Raw body, used as the message when there is no envelope

    Unrecognized shapes still produce an EngineError so a failed call can
    never be mistaken for a success.
    """
    if isinstance(payload, dict) and ("code" in payload or "message" in payload):
        return EngineError(
            code=str(payload.get("code") or f"http_{status_code}"),
            message=str(payload.get("message") or text or f"HTTP {status_code}"),
            error_type=payload.get("type"),
            link=payload.get("link"),
            status_code=status_code,
        )
    return EngineError(
        code=f"http_{status_code}",
        message=text or f"Engine returned HTTP {status_code}",
        status_code=status_code,
    )


def map_task_error(error: Optional[Dict[str, Any]]) -> Optional[EngineError]:
    """Translate the ``error`` object of a failed task."""
    if not error:
        return None
    return EngineError(
        code=str(error.get("code") or "unknown_error"),
        message=str(error.get("message") or "Task failed without a message"),
        error_type=error.get("type"),
        link=error.get("link"),
    )
