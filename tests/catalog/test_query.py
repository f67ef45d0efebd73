from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from reelsearch.catalog.query import (
    build_filter_clauses,
    build_match_expression,
    extract_terms,
    field_match_weight,
    fts_keyword_search,
    load_vector_rows,
    matches_filters,
    rank_by_l2_distance,
    tiered_keyword_search,
)
from reelsearch.catalog.repository import CatalogRepository, MovieRow
from reelsearch.hybrid.models import SearchFilters


def _repository(tmp_path: Path) -> CatalogRepository:
    repository = CatalogRepository(tmp_path / "catalog.db")
    repository.upsert_movies(
        [
            MovieRow(
                movie_id=1,
                title="Space Opera",
                summary="A musical comedy.",
                year=1999,
                genres=["Comedy"],
                rating_score=5.5,
            ),
            MovieRow(
                movie_id=2,
                title="Galaxy Quest",
                original_title="Space Opera Quest",
                summary="Actors in space.",
                year=1999,
                genres=["Comedy", "Sci-Fi"],
                rating_score=7.4,
            ),
            MovieRow(
                movie_id=3,
                title="Dune",
                summary="An epic space opera on a desert planet.",
                year=2021,
                genres=["Sci-Fi"],
                directors=["Denis Villeneuve"],
                rating_score=8.0,
            ),
            MovieRow(movie_id=4, title="100% Pure", summary="Percentages.", year=2005),
        ]
    )
    return repository


def test_tiered_search_scores_title_original_title_and_summary(tmp_path: Path) -> None:
    with _repository(tmp_path) as repository:
        rows = tiered_keyword_search(repository.connection, query="space opera", limit=10)

    assert [(row["id"], row["keyword_score"]) for row in rows] == [(1, 3), (2, 2), (3, 1)]


def test_tiered_search_applies_filters_and_escapes_wildcards(tmp_path: Path) -> None:
    with _repository(tmp_path) as repository:
        sci_fi = tiered_keyword_search(
            repository.connection,
            query="space",
            limit=10,
            filters=SearchFilters(genre="sci-fi", min_rating=7.5),
        )
        percent = tiered_keyword_search(repository.connection, query="0%", limit=10)

    assert [row["id"] for row in sci_fi] == [3]
    assert [row["id"] for row in percent] == [4]


def test_filter_clauses_and_python_filter_agree() -> None:
    clauses, params = build_filter_clauses(SearchFilters(year=1999, genre=" Comedy ", min_rating=6.0))
    fields = {"year": 1999, "genres": ["Comedy", "Sci-Fi"], "rating_score": 7.4}

    assert len(clauses) == 3
    assert params == [1999, "comedy", 6.0]
    assert build_filter_clauses(None) == ([], [])
    assert matches_filters(fields, SearchFilters(year=1999, genre="comedy", min_rating=6.0))
    assert not matches_filters(fields, SearchFilters(year=2000))
    assert not matches_filters(fields, SearchFilters(genre="horror"))
    assert not matches_filters({**fields, "rating_score": None}, SearchFilters(min_rating=1.0))


def test_terms_are_tokenized_casefolded_and_deduplicated() -> None:
    assert extract_terms("Space, SPACE opera!") == ["space", "opera"]
    assert extract_terms("Солярис: космос") == ["солярис", "космос"]
    assert build_match_expression('say "hi"') == '"say" OR "hi"'
    assert build_match_expression("?!") == ""


def test_fts_search_matches_any_term(tmp_path: Path) -> None:
    with _repository(tmp_path) as repository:
        rows = fts_keyword_search(repository.connection, query="villeneuve desert", limit=10)
        empty = fts_keyword_search(repository.connection, query="...", limit=10)
        people_only = fts_keyword_search(repository.connection, query="villeneuve", limit=10)

    assert [row["id"] for row in rows] == [3]
    assert empty == []
    assert people_only == []


def test_field_match_weight_sums_matching_fields() -> None:
    fields = {"title": "Galaxy Quest", "original_title": "Space Opera Quest", "summary": "Actors in space."}

    assert field_match_weight(fields, ["space"]) == 3
    assert field_match_weight(fields, ["quest"]) == 5
    assert field_match_weight(fields, ["quest", "space"]) == 6
    assert field_match_weight(fields, []) == 0


def test_load_vector_rows_strict_and_lenient(tmp_path: Path) -> None:
    with _repository(tmp_path) as repository:
        repository.update_embeddings(movie_id=1, embedding=[1.0, 0.0], summary_embedding=[1.0, 0.0])
        repository.update_embeddings(movie_id=2, embedding=[0.0, 1.0], summary_embedding=None)
        with repository.connection:
            repository.connection.execute("UPDATE movies SET embedding = '[1.0,' , summary_embedding = '' WHERE id = 3")

        with pytest.raises(ValueError, match="Malformed embedding for movie 3"):
            load_vector_rows(repository.connection, column="embedding")
        lenient = load_vector_rows(repository.connection, column="embedding", skip_invalid=True)
        summaries = load_vector_rows(repository.connection, column="summary_embedding", skip_invalid=True)
        filtered = load_vector_rows(
            repository.connection,
            column="embedding",
            skip_invalid=True,
            filters=SearchFilters(min_rating=7.0),
        )

    assert [row.movie_id for row in lenient] == [1, 2]
    assert [row.movie_id for row in summaries] == [1]
    assert [row.movie_id for row in filtered] == [2]
    assert lenient[1].popularity == pytest.approx(7.4)
    assert lenient[1].fields["genres"] == ["Comedy", "Sci-Fi"]


def test_load_vector_rows_rejects_unknown_column(tmp_path: Path) -> None:
    with _repository(tmp_path) as repository:
        with pytest.raises(ValueError, match="Unsupported vector column"):
            load_vector_rows(repository.connection, column="title")


def test_rank_by_l2_distance_orders_and_validates(tmp_path: Path) -> None:
    with _repository(tmp_path) as repository:
        repository.update_embeddings(movie_id=1, embedding=[3.0, 4.0], summary_embedding=None)
        repository.update_embeddings(movie_id=2, embedding=[0.0, 1.0], summary_embedding=None)
        repository.update_embeddings(movie_id=3, embedding=[0.0, 1.0, 2.0], summary_embedding=None)
        rows = load_vector_rows(repository.connection, column="embedding")

    query = np.asarray([0.0, 0.0], dtype=np.float32)
    ranked = rank_by_l2_distance(rows, query, limit=5, skip_mismatched=True)

    assert [(row.movie_id, distance) for row, distance in ranked] == [(2, pytest.approx(1.0)), (1, pytest.approx(5.0))]
    with pytest.raises(ValueError, match="dimension mismatch for movie 3"):
        rank_by_l2_distance(rows, query, limit=5)
    assert rank_by_l2_distance([], query, limit=5) == []
