"""CLI entrypoint that embeds movies missing vectors."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from reelsearch.semantic.indexer import EmbeddingIndexer


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Fill missing movie embeddings and optionally rebuild the FAISS index")
    parser.add_argument("--db-path", default=".reelsearch-main.db", help="SQLite catalog path")
    parser.add_argument("--index-path", default=None, help="FAISS index file to rebuild after embedding")
    parser.add_argument("--batch-size", type=int, default=32, help="Embedding batch size")
    parser.add_argument("--limit", type=int, default=None, help="Maximum number of movies to embed in this run")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    with EmbeddingIndexer.from_db_path(
        db_path=args.db_path,
        index_path=args.index_path,
        batch_size=args.batch_size,
    ) as indexer:
        stats = indexer.index_missing(limit=args.limit)

    print(json.dumps(stats.to_dict(), ensure_ascii=True, indent=2))
    return 0 if stats.errors == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
