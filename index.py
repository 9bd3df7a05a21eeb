"""CLI entrypoint: upsert line-delimited JSON works into Elasticsearch."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from es_client import WORKS_MAPPING, ElasticsearchClient, ElasticsearchError

DEFAULT_ELASTICSEARCH_URL = "http://localhost:9200"
DEFAULT_INDEX = "works"
DEFAULT_CHUNK_SIZE = 1024

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IndexStats:
    """Counters for one indexing run."""

    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    chunks: int = 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Index fetched works into Elasticsearch")
    parser.add_argument("--input", type=Path, required=True, help="Line-delimited JSON works file")
    parser.add_argument(
        "--elasticsearch",
        default=os.getenv("ELASTICSEARCH_URL", DEFAULT_ELASTICSEARCH_URL),
        help="Endpoint of the Elasticsearch cluster",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=int(os.getenv("INDEX_CHUNK_SIZE", str(DEFAULT_CHUNK_SIZE))),
        help="Documents uploaded per bulk request",
    )
    parser.add_argument("--index", default=os.getenv("WORKS_INDEX", DEFAULT_INDEX), help="Target index name")
    args = parser.parse_args(argv)

    if args.chunk_size < 1:
        parser.error("--chunk-size must be at least 1")
    return args


def parse_record(line: str | bytes) -> dict[str, Any]:
    """Decode one line into a work record, requiring a string or integer `id`.

    Raises ValueError for invalid UTF-8, invalid JSON (including NaN and
    Infinity), non-objects and missing ids.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8")
    record = json.loads(line, parse_constant=_reject_constant)
    if not isinstance(record, dict):
        raise ValueError("expected a JSON object")

    work_id = record.get("id")
    # bool is an int subclass but never a valid id
    if isinstance(work_id, bool) or not isinstance(work_id, (str, int)) or work_id == "":
        raise ValueError(f"missing or invalid id: {work_id!r}")
    return record


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant: {name}")


def index_works(
    client: ElasticsearchClient,
    input_path: Path,
    index: str = DEFAULT_INDEX,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> IndexStats:
    """Upsert every valid line of `input_path` into `index`, `chunk_size` documents per request.

    Malformed lines are logged and skipped. Documents the cluster rejects are
    logged and counted as failed. Connectivity problems raise ElasticsearchError.
    """
    stats = IndexStats()
    chunk: list[dict[str, Any]] = []

    # Lines are decoded one at a time so a bad byte sequence only skips its line.
    with input_path.open("rb") as fh:
        client.ping()
        client.ensure_index(index, WORKS_MAPPING)

        for line_number, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                chunk.append(parse_record(line))
            except ValueError as exc:
                stats.skipped += 1
                LOGGER.warning("Skipping malformed line %s of %s: %s", line_number, input_path, exc)
                continue

            if len(chunk) >= chunk_size:
                _flush(client, index, chunk, stats)
                chunk = []

    if chunk:
        _flush(client, index, chunk, stats)

    return stats


def _flush(client: ElasticsearchClient, index: str, chunk: list[dict[str, Any]], stats: IndexStats) -> None:
    LOGGER.info("Processing chunk %s (%s documents)", stats.chunks, len(chunk))
    errors = client.bulk_upsert(index, chunk)
    for error in errors:
        LOGGER.warning("Document id=%s rejected: status=%s error=%s", error["id"], error["status"], error["error"])

    stats.chunks += 1
    stats.failed += len(errors)
    stats.indexed += len(chunk) - len(errors)


def main(argv: list[str] | None = None) -> int:
    """Initialize config and run one indexing pass."""
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = parse_args(argv)

    client = ElasticsearchClient(args.elasticsearch)
    try:
        stats = index_works(client, args.input, index=args.index, chunk_size=args.chunk_size)
    except OSError as exc:
        logging.error("Cannot read input file %s: %s", args.input, exc)
        return 1
    except ElasticsearchError as exc:
        logging.error("%s", exc)
        return 1
    finally:
        client.close()

    logging.info(
        "Index complete. indexed=%s skipped=%s failed=%s chunks=%s",
        stats.indexed,
        stats.skipped,
        stats.failed,
        stats.chunks,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
