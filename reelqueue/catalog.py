from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .errors import CatalogValidationError
from .mutations import Document


@dataclass(frozen=True)
class CollectionSchema:
    name: str
    required: tuple[str, ...]
    numeric: tuple[str, ...] = ()
    reference: tuple[str, ...] = ()
    reference_lists: tuple[str, ...] = ()
    sort_key: str = "_id"
    sort_descending: bool = False


SCHEMAS: dict[str, CollectionSchema] = {
    "movies": CollectionSchema(
        name="movies",
        required=("title", "year", "duration_min", "rating", "synopsis", "posterUrl", "producerId"),
        numeric=("year", "duration_min", "rating"),
        reference=("producerId",),
        reference_lists=("directorIds",),
        sort_key="year",
        sort_descending=True,
    ),
    "directors": CollectionSchema(
        name="directors",
        required=("fullName", "nationality", "birthYear", "imageUrl"),
        numeric=("birthYear",),
        sort_key="fullName",
    ),
    "producers": CollectionSchema(
        name="producers",
        required=("name", "country", "foundedYear", "logoUrl"),
        numeric=("foundedYear",),
        sort_key="name",
    ),
}


def get_schema(collection: str) -> Optional[CollectionSchema]:
    return SCHEMAS.get(collection)


def _to_number(field: str, value: Any) -> int | float:
    if isinstance(value, bool):
        raise CatalogValidationError(f"{field} must be a number")
    if isinstance(value, (int, float)):
        number = value
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            raise CatalogValidationError(f"{field} must be a number, got {value!r}") from None
    if isinstance(number, float):
        if not math.isfinite(number):
            raise CatalogValidationError(f"{field} must be a finite number")
        if number.is_integer():
            return int(number)
    return number


def _check_value(field: str, value: Any) -> None:
    if value is None or isinstance(value, (str, int, float, bool)):
        return
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return
    raise CatalogValidationError(
        f"{field} has unsupported type {type(value).__name__}; "
        "expected a string, number, boolean, null or a list of identifiers"
    )


def _normalize(schema: CollectionSchema, data: Mapping[str, Any]) -> Document:
    document: Document = {k: v for k, v in data.items() if k != "_id"}

    for field in schema.numeric:
        if document.get(field) is not None:
            document[field] = _to_number(field, document[field])

    for field in schema.reference:
        if document.get(field) is not None:
            document[field] = str(document[field])

    for field in schema.reference_lists:
        if field not in document or document[field] is None:
            continue
        refs = document[field]
        if not isinstance(refs, list):
            raise CatalogValidationError(f"{field} must be a list of identifiers")
        document[field] = [str(ref) for ref in refs]

    for field, value in document.items():
        _check_value(field, value)
    return document


def _require_mapping(data: Any) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise CatalogValidationError("Request body must be a JSON object")
    return data


def prepare_create(schema: CollectionSchema, data: Any) -> Document:
    """
    Check required fields and normalize a new document.

    Missing, null and empty-string values count as absent.
    """
    data = _require_mapping(data)
    for field in schema.required:
        if data.get(field) is None or data.get(field) == "":
            raise CatalogValidationError(f"Missing {field}")
    return _normalize(schema, data)


def prepare_update(schema: CollectionSchema, data: Any) -> Document:
    """Normalize a partial update; no field is required."""
    return _normalize(schema, _require_mapping(data))


def present_document(schema: CollectionSchema, document: dict[str, Any]) -> dict[str, Any]:
    """
    Shape a stored document for clients.

    Reference fields are always present: an absent single reference reads as
    "" and an absent reference list as [].
    """
    shaped = dict(document)
    for field in schema.reference:
        shaped[field] = "" if shaped.get(field) is None else str(shaped[field])
    for field in schema.reference_lists:
        refs = shaped.get(field)
        shaped[field] = [str(ref) for ref in refs] if isinstance(refs, list) else []
    return shaped


def _sort_value(value: Any) -> tuple[int, Any]:
    # Documents lacking the key sort last; numbers and strings never compare.
    if value is None:
        return (2, "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, value)
    return (1, str(value).lower())


def sort_documents(schema: CollectionSchema, documents: list[dict[str, Any]]) -> list[dict[str, Any]]:
    ordered = sorted(documents, key=lambda doc: str(doc.get("_id", "")), reverse=schema.sort_descending)
    present = [doc for doc in ordered if doc.get(schema.sort_key) is not None]
    missing = [doc for doc in ordered if doc.get(schema.sort_key) is None]
    present.sort(key=lambda doc: _sort_value(doc.get(schema.sort_key)), reverse=schema.sort_descending)
    return present + missing


def movie_filter(q: Optional[str], producer_id: Optional[str]):
    """Build the in-memory predicate for the movie listing query parameters."""
    needle = q.lower() if q else None

    def predicate(doc: dict[str, Any]) -> bool:
        if needle is not None and needle not in str(doc.get("title", "")).lower():
            return False
        if producer_id and str(doc.get("producerId", "")) != producer_id:
            return False
        return True

    return predicate
