"""
Document codec.

Documents are ordered mappings of field name to a JSON value variant:
null, boolean, number, text, array of values, or nested mapping. The codec
validates that shape and converts to and from the engine's JSON wire bytes
without coercing types ("1" and 1 stay distinct, True never becomes 1).
"""

import json
import math
from typing import Any, Dict, Iterable, List, Union

from embedsearch.errors import EncodingError

DocumentValue = Union[None, bool, int, float, str, List["DocumentValue"], Dict[str, "DocumentValue"]]
Document = Dict[str, DocumentValue]


def _reject_constant(name: str) -> Any:
    raise EncodingError("$", f"non-finite number {name} is not supported")


def _validate(value: Any, path: str) -> DocumentValue:
    # bool before int: bool is a subclass of int
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise EncodingError(path, f"non-finite number {value!r} is not supported")
        return value
    if isinstance(value, dict):
        result: Dict[str, DocumentValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise EncodingError(path, f"field names must be text, got {type(key).__name__}")
            result[key] = _validate(item, f"{path}.{key}")
        return result
    if isinstance(value, (list, tuple)):
        return [_validate(item, f"{path}[{i}]") for i, item in enumerate(value)]
    raise EncodingError(path, f"unsupported value type {type(value).__name__}")


def validate_document(document: Any) -> Document:
    """Check a document's shape and return it with tuples normalized to lists."""
    if not isinstance(document, dict):
        raise EncodingError("$", f"documents must be mappings, got {type(document).__name__}")
    return _validate(document, "$")


def encode_document(document: Document) -> bytes:
    return json.dumps(validate_document(document), ensure_ascii=False, allow_nan=False).encode("utf-8")


def encode_documents(documents: Iterable[Document]) -> bytes:
    """Encode a batch of documents as a JSON array."""
    batch = []
    for i, document in enumerate(documents):
        try:
            batch.append(validate_document(document))
        except EncodingError as e:
            raise EncodingError(e.path.replace("$", f"$[{i}]", 1), e.reason) from None
    return json.dumps(batch, ensure_ascii=False, allow_nan=False).encode("utf-8")


def encode_value(value: Any) -> DocumentValue:
    """Validate a single value (used for query payloads such as filters)."""
    return _validate(value, "$")


def _loads(data: Union[bytes, str]) -> Any:
    try:
        return json.loads(data, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise EncodingError("$", f"invalid JSON: {e.msg}") from e


def decode_value(value: Any) -> DocumentValue:
    """Validate an already-parsed JSON value coming back from the engine."""
    return _validate(value, "$")


def decode_document(data: Union[bytes, str]) -> Document:
    document = _loads(data)
    if not isinstance(document, dict):
        raise EncodingError("$", "expected a JSON object")
    return document


def decode_documents(data: Union[bytes, str]) -> List[Document]:
    documents = _loads(data)
    if not isinstance(documents, list):
        raise EncodingError("$", "expected a JSON array of documents")
    for i, document in enumerate(documents):
        if not isinstance(document, dict):
            raise EncodingError(f"$[{i}]", "expected a JSON object")
    return documents
