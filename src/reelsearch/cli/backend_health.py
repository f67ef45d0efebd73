"""CLI entrypoint reporting search configuration and backend health."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from reelsearch.hybrid.aggregator import SearchAggregator
from reelsearch.hybrid.config import AggregatorSettings
from reelsearch.semantic.config import EmbeddingSettings


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Show search configuration and check every configured backend")
    parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        settings = AggregatorSettings.from_env()
        embedding_settings = EmbeddingSettings.from_env()
    except ValueError as exc:
        print(json.dumps({"error": f"invalid configuration: {exc}"}, ensure_ascii=True, indent=2))
        return 1

    aggregator = SearchAggregator.from_settings(settings, embedding_settings)
    health = asyncio.run(aggregator.health())

    payload = {
        "embedding": embedding_settings.describe(),
        "aggregator": settings.describe(),
        "backends": aggregator.describe(),
        "health": health,
    }
    print(json.dumps(payload, ensure_ascii=True, indent=2))
    return 0 if all(health.values()) else 1


if __name__ == "__main__":
    raise SystemExit(main())
