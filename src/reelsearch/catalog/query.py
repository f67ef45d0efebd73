"""SQL builders and row mapping shared by the catalog search adapters."""

from __future__ import annotations

from dataclasses import dataclass
import json
import re
import sqlite3
from typing import Any

import numpy as np
from razdel import tokenize

from reelsearch.hybrid.models import SearchFilters


_WORD_RE = re.compile(r"\w+", re.UNICODE)

TIER_TITLE = 3
TIER_ORIGINAL_TITLE = 2
TIER_SUMMARY = 1
TIER_SCALE = float(TIER_TITLE)

# Weighted field-match count used when several fields can match at once.
FIELD_WEIGHTS: tuple[tuple[str, int], ...] = (
    ("title", TIER_TITLE),
    ("original_title", TIER_ORIGINAL_TITLE),
    ("summary", TIER_SUMMARY),
)
FIELD_WEIGHT_SCALE = float(sum(weight for _, weight in FIELD_WEIGHTS))
KEYWORD_COLUMNS = " ".join(name for name, _ in FIELD_WEIGHTS)

MOVIE_COLUMNS = """
    m.id AS id,
    m.title AS title,
    m.original_title AS original_title,
    m.summary AS summary,
    m.year AS year,
    m.genres AS genres,
    m.directors AS directors,
    m.actors AS actors,
    m.rating_score AS rating_score,
    m.rating_count AS rating_count
"""


@dataclass(slots=True)
class VectorRow:
    movie_id: int
    fields: dict[str, Any]
    popularity: float | None
    vector: list[float]


def _json_list(raw: object) -> list[str]:
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            return [part.strip() for part in raw.split(",") if part.strip()]
    else:
        value = raw
    if isinstance(value, list):
        return [str(item) for item in value]
    return [str(value)]


def row_to_fields(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "title": row["title"],
        "original_title": row["original_title"],
        "summary": row["summary"],
        "year": row["year"],
        "genres": _json_list(row["genres"]),
        "directors": _json_list(row["directors"]),
        "actors": _json_list(row["actors"]),
        "rating_score": row["rating_score"],
        "rating_count": row["rating_count"],
    }


def row_popularity(row: sqlite3.Row) -> float | None:
    value = row["rating_score"]
    return float(value) if value is not None else None


def build_filter_clauses(filters: SearchFilters | None, *, alias: str = "m") -> tuple[list[str], list[object]]:
    clauses: list[str] = []
    params: list[object] = []
    if filters is None:
        return clauses, params

    if filters.year is not None:
        clauses.append(f"{alias}.year = ?")
        params.append(int(filters.year))

    if filters.genre and filters.genre.strip():
        clauses.append(
            f"EXISTS (SELECT 1 FROM json_each(CASE WHEN json_valid({alias}.genres) THEN {alias}.genres ELSE '[]' END) g "
            "WHERE LOWER(g.value) = ?)"
        )
        params.append(filters.genre.strip().lower())

    if filters.min_rating > 0.0:
        clauses.append(f"COALESCE({alias}.rating_score, 0) >= ?")
        params.append(float(filters.min_rating))

    return clauses, params


def matches_filters(fields: dict[str, Any], filters: SearchFilters | None) -> bool:
    """Python-side counterpart of ``build_filter_clauses`` for post-filtered hits."""

    if filters is None:
        return True
    if filters.year is not None and fields.get("year") != filters.year:
        return False
    if filters.genre and filters.genre.strip():
        wanted = filters.genre.strip().lower()
        if wanted not in {str(genre).lower() for genre in fields.get("genres") or []}:
            return False
    if filters.min_rating > 0.0 and float(fields.get("rating_score") or 0.0) < filters.min_rating:
        return False
    return True


def _like_pattern(query: str) -> str:
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def tiered_keyword_search(
    connection: sqlite3.Connection,
    *,
    query: str,
    limit: int,
    filters: SearchFilters | None = None,
) -> list[sqlite3.Row]:
    """Substring search scored 3/2/1 by the first field that matches."""

    pattern = _like_pattern(query.strip())
    filter_clauses, filter_params = build_filter_clauses(filters)
    where = [
        "(m.title LIKE ? ESCAPE '\\' OR m.original_title LIKE ? ESCAPE '\\' OR m.summary LIKE ? ESCAPE '\\')",
        *filter_clauses,
    ]
    sql = f"""
        SELECT
            {MOVIE_COLUMNS},
            (
                CASE
                    WHEN m.title LIKE ? ESCAPE '\\' THEN {TIER_TITLE}
                    WHEN m.original_title LIKE ? ESCAPE '\\' THEN {TIER_ORIGINAL_TITLE}
                    WHEN m.summary LIKE ? ESCAPE '\\' THEN {TIER_SUMMARY}
                    ELSE 0
                END
            ) AS keyword_score
        FROM movies m
        WHERE {' AND '.join(where)}
        ORDER BY keyword_score DESC, COALESCE(m.rating_score, 0) DESC, m.id ASC
        LIMIT ?
    """
    params: list[object] = [pattern, pattern, pattern, pattern, pattern, pattern, *filter_params, limit]
    return connection.execute(sql, tuple(params)).fetchall()


def extract_terms(text: str) -> list[str]:
    terms: list[str] = []
    seen: set[str] = set()
    for token in tokenize(text.casefold()):
        value = token.text.strip()
        if value and _WORD_RE.fullmatch(value) and value not in seen:
            terms.append(value)
            seen.add(value)
    return terms


def _quoted(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def build_match_expression(query: str) -> str:
    return " OR ".join(_quoted(term) for term in extract_terms(query))


def fts_keyword_search(
    connection: sqlite3.Connection,
    *,
    query: str,
    limit: int,
    filters: SearchFilters | None = None,
) -> list[sqlite3.Row]:
    """FTS5 search ranked by bm25 with title-heavy column weights."""

    match_expression = build_match_expression(query)
    if not match_expression:
        return []
    # Match only the columns field_match_weight scores.
    match_expression = f"{{{KEYWORD_COLUMNS}}} : ({match_expression})"

    filter_clauses, filter_params = build_filter_clauses(filters)
    where = ["movies_fts MATCH ?", *filter_clauses]
    sql = f"""
        SELECT
            {MOVIE_COLUMNS},
            bm25(movies_fts, 3.0, 2.0, 1.0, 2.5, 2.5, 1.5) AS rank
        FROM movies_fts
        JOIN movies m ON m.id = movies_fts.rowid
        WHERE {' AND '.join(where)}
        ORDER BY rank ASC, m.id ASC
        LIMIT ?
    """
    params: list[object] = [match_expression, *filter_params, limit]
    return connection.execute(sql, tuple(params)).fetchall()


def field_match_weight(fields: dict[str, Any], terms: list[str]) -> int:
    """Sum the weights of the fields that contain at least one query term."""

    if not terms:
        return 0
    total = 0
    for name, weight in FIELD_WEIGHTS:
        value = fields.get(name)
        if not value:
            continue
        field_terms = set(extract_terms(str(value)))
        if field_terms.intersection(terms):
            total += weight
    return total


def load_vector_rows(
    connection: sqlite3.Connection,
    *,
    column: str,
    filters: SearchFilters | None = None,
    skip_invalid: bool = False,
) -> list[VectorRow]:
    """Load stored JSON vectors from ``column``.

    With ``skip_invalid`` rows holding empty or malformed JSON are ignored;
    otherwise a malformed row raises ``ValueError``.
    """

    if column not in {"embedding", "summary_embedding"}:
        raise ValueError(f"Unsupported vector column: {column}")

    filter_clauses, filter_params = build_filter_clauses(filters)
    where = [f"m.{column} IS NOT NULL"]
    if skip_invalid:
        where.extend([f"m.{column} != ''", f"json_valid(m.{column}) = 1"])
    where.extend(filter_clauses)

    rows = connection.execute(
        f"""
        SELECT {MOVIE_COLUMNS}, m.{column} AS vector_json
        FROM movies m
        WHERE {' AND '.join(where)}
        ORDER BY m.id ASC
        """,
        tuple(filter_params),
    ).fetchall()

    loaded: list[VectorRow] = []
    for row in rows:
        try:
            raw = json.loads(row["vector_json"])
            vector = [float(value) for value in raw]
        except (TypeError, ValueError) as exc:
            if skip_invalid:
                continue
            raise ValueError(f"Malformed {column} for movie {row['id']}: {exc}") from exc
        loaded.append(
            VectorRow(
                movie_id=int(row["id"]),
                fields=row_to_fields(row),
                popularity=row_popularity(row),
                vector=vector,
            )
        )
    return loaded


def rank_by_l2_distance(
    rows: list[VectorRow],
    query_vector: np.ndarray,
    *,
    limit: int,
    skip_mismatched: bool = False,
) -> list[tuple[VectorRow, float]]:
    """Return the ``limit`` rows closest to ``query_vector`` by Euclidean distance."""

    query = np.asarray(query_vector, dtype=np.float32)
    dimension = int(query.shape[0])
    usable: list[VectorRow] = []
    for row in rows:
        if len(row.vector) != dimension:
            if skip_mismatched:
                continue
            raise ValueError(
                f"Vector dimension mismatch for movie {row.movie_id}: expected {dimension}, got {len(row.vector)}"
            )
        usable.append(row)
    if not usable:
        return []

    matrix = np.asarray([row.vector for row in usable], dtype=np.float32)
    distances = np.linalg.norm(matrix - query.reshape(1, -1), axis=1)
    order = np.argsort(distances, kind="stable")[:limit]
    return [(usable[int(index)], float(distances[int(index)])) for index in order]
