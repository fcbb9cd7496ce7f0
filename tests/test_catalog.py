from __future__ import annotations

import pytest

from reelqueue.catalog import (
    SCHEMAS,
    get_schema,
    movie_filter,
    prepare_create,
    prepare_update,
    present_document,
    sort_documents,
)
from reelqueue.errors import CatalogValidationError

MOVIE = {
    "title": "Halloween",
    "year": "1978",
    "duration_min": 91,
    "rating": "7.7",
    "synopsis": "The night he came home.",
    "posterUrl": "https://example.test/halloween.jpg",
    "producerId": 17,
    "directorIds": ["d1", 2],
}


class TestPrepareCreate:
    """Tests for prepare_create()."""

    def test_normalizes_numbers_and_references(self) -> None:
        document = prepare_create(SCHEMAS["movies"], MOVIE)

        assert document["year"] == 1978
        assert isinstance(document["year"], int)
        assert document["rating"] == 7.7
        assert document["producerId"] == "17"
        assert document["directorIds"] == ["d1", "2"]

    @pytest.mark.parametrize("missing", ["title", "year", "producerId"])
    def test_missing_required_field(self, missing: str) -> None:
        data = {k: v for k, v in MOVIE.items() if k != missing}

        with pytest.raises(CatalogValidationError, match=f"Missing {missing}"):
            prepare_create(SCHEMAS["movies"], data)

    def test_empty_string_counts_as_missing(self) -> None:
        data = {"fullName": "", "nationality": "US", "birthYear": 1948, "imageUrl": "u"}

        with pytest.raises(CatalogValidationError, match="Missing fullName"):
            prepare_create(SCHEMAS["directors"], data)

    def test_drops_client_id(self) -> None:
        data = {"_id": "x", "name": "Acme", "country": "US", "foundedYear": 1990, "logoUrl": "u"}

        assert "_id" not in prepare_create(SCHEMAS["producers"], data)

    def test_non_numeric_value(self) -> None:
        with pytest.raises(CatalogValidationError, match="foundedYear must be a number"):
            prepare_create(
                SCHEMAS["producers"],
                {"name": "Acme", "country": "US", "foundedYear": "soon", "logoUrl": "u"},
            )

    @pytest.mark.parametrize("value", [True, float("nan"), float("inf")])
    def test_rejects_non_finite_or_boolean_numbers(self, value) -> None:
        with pytest.raises(CatalogValidationError):
            prepare_update(SCHEMAS["movies"], {"rating": value})

    def test_rejects_nested_objects(self) -> None:
        with pytest.raises(CatalogValidationError, match="unsupported type"):
            prepare_update(SCHEMAS["directors"], {"awards": {"oscar": 1}})

    def test_body_must_be_object(self) -> None:
        with pytest.raises(CatalogValidationError, match="JSON object"):
            prepare_create(SCHEMAS["directors"], ["not", "an", "object"])


class TestPrepareUpdate:
    def test_partial_update_needs_no_required_fields(self) -> None:
        assert prepare_update(SCHEMAS["movies"], {"rating": "9"}) == {"rating": 9}

    def test_reference_list_must_be_list(self) -> None:
        with pytest.raises(CatalogValidationError, match="directorIds must be a list"):
            prepare_update(SCHEMAS["movies"], {"directorIds": "d1"})


class TestListing:
    def test_get_schema(self) -> None:
        assert get_schema("movies") is SCHEMAS["movies"]
        assert get_schema("users") is None

    def test_movies_sorted_by_year_descending(self) -> None:
        docs = [
            {"_id": "a", "title": "Alien", "year": 1979},
            {"_id": "b", "title": "Heat", "year": 1995},
            {"_id": "c", "title": "Untitled"},
            {"_id": "d", "title": "Jaws", "year": 1975},
        ]

        ordered = sort_documents(SCHEMAS["movies"], docs)

        assert [doc["_id"] for doc in ordered] == ["b", "a", "d", "c"]

    def test_directors_sorted_by_name(self) -> None:
        docs = [{"_id": "1", "fullName": "ridley Scott"}, {"_id": "2", "fullName": "Dario Argento"}]

        ordered = sort_documents(SCHEMAS["directors"], docs)

        assert [doc["fullName"] for doc in ordered] == ["Dario Argento", "ridley Scott"]

    def test_movie_filter(self) -> None:
        docs = [
            {"title": "Alien", "producerId": "p1"},
            {"title": "Aliens", "producerId": "p2"},
            {"title": "Heat", "producerId": "p1"},
        ]

        assert [d["title"] for d in docs if movie_filter("ALIEN", None)(d)] == ["Alien", "Aliens"]
        assert [d["title"] for d in docs if movie_filter("alien", "p2")(d)] == ["Aliens"]
        assert [d["title"] for d in docs if movie_filter(None, None)(d)] == ["Alien", "Aliens", "Heat"]


def test_present_document_fills_missing_references() -> None:
    assert present_document(SCHEMAS["movies"], {"_id": "m1", "title": "Alien", "producerId": None}) == {
        "_id": "m1",
        "title": "Alien",
        "producerId": "",
        "directorIds": [],
    }
    assert present_document(SCHEMAS["producers"], {"_id": "p1", "name": "Acme"}) == {"_id": "p1", "name": "Acme"}
