"""CLI entrypoint for aggregated hybrid search across configured backends."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from reelsearch.hybrid.aggregator import SearchAggregator
from reelsearch.hybrid.config import AggregatorSettings
from reelsearch.hybrid.models import DEFAULT_LIMIT, InvalidQuery, Query, SearchFilters, Weights
from reelsearch.semantic.config import EmbeddingSettings
from reelsearch.semantic.embedder import EmbeddingUnavailable


def _print(payload: dict[str, object]) -> None:
    print(json.dumps(payload, ensure_ascii=True, indent=2))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Search every configured movie backend and fuse the results")
    parser.add_argument("--query", required=True, help="Search text")
    parser.add_argument("--limit", type=int, default=DEFAULT_LIMIT, help="Maximum number of returned results (capped at 20)")
    parser.add_argument(
        "--backend",
        action="append",
        default=None,
        help="Backend id to query; repeat for several (default: all configured)",
    )
    parser.add_argument("--vector-weight", type=float, default=None, help="Vector weight in [0.0, 1.0]")
    parser.add_argument("--keyword-weight", type=float, default=None, help="Keyword weight in [0.0, 1.0]")
    parser.add_argument("--year", type=int, default=None, help="Optional exact release year filter")
    parser.add_argument("--genre", default=None, help="Optional genre filter (case-insensitive)")
    parser.add_argument("--min-rating", type=float, default=0.0, help="Optional minimum rating filter")
    parser.add_argument("--timeout", type=float, default=None, help="Override the global deadline in seconds")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        settings = AggregatorSettings.from_env()
        embedding_settings = EmbeddingSettings.from_env()
    except ValueError as exc:
        _print({"error": f"invalid configuration: {exc}"})
        return 1

    aggregator = SearchAggregator.from_settings(settings, embedding_settings)

    try:
        weights = Weights(
            vector=settings.default_weights.vector if args.vector_weight is None else args.vector_weight,
            keyword=settings.default_weights.keyword if args.keyword_weight is None else args.keyword_weight,
        )
        filters = SearchFilters(year=args.year, genre=args.genre, min_rating=args.min_rating)
        query = Query(
            text=args.query,
            backends=frozenset(args.backend or aggregator.backend_ids),
            limit=args.limit,
            weights=weights,
            filters=None if filters.is_empty else filters,
        )
        response = aggregator.search_sync(query, timeout_seconds=args.timeout)
    except InvalidQuery as exc:
        _print({"error": str(exc), "query": args.query})
        return 2
    except EmbeddingUnavailable as exc:
        _print({"error": str(exc), "query": args.query})
        return 1

    _print(response.to_dict())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
