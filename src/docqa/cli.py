"""Command line entry point for ingesting documents and asking questions."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from docqa.cache.extraction import ExtractionCache
from docqa.cache.index import LibraryIndex
from docqa.cache.ttl import TTLCache
from docqa.config import Settings
from docqa.errors import DocQAError, InvalidRequestError
from docqa.ingest.ocr import OcrBatchRunner, PageImage
from docqa.ingest.pipeline import IngestionOrchestrator
from docqa.llm.openai_provider import OpenAILLMProvider, OpenAIPageOcr
from docqa.logging_config import configure_logging
from docqa.services.answer import AnswerService
from docqa.storage import BlobStore, LocalBlobStore

LOGGER = logging.getLogger(__name__)


def parse_bucket_specs(entries: Sequence[str]) -> Dict[str, BlobStore]:
    """Turn ``NAME=PATH`` pairs into local bucket stores."""

    buckets: Dict[str, BlobStore] = {}
    for entry in entries:
        name, sep, path = entry.partition("=")
        if not sep or not name.strip() or not path.strip():
            raise InvalidRequestError(f"Bucket must be NAME=PATH, got {entry!r}")
        buckets[name.strip()] = LocalBlobStore(path.strip())
    return buckets


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docqa", description=__doc__)
    parser.add_argument(
        "--bucket",
        dest="buckets",
        action="append",
        default=[],
        metavar="NAME=PATH",
        help="Source bucket backed by a local directory (repeatable).",
    )
    parser.add_argument("--library-root", default=None, help="Override DOCQA_LIBRARY_ROOT.")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Ingest one object from a bucket.")
    ingest.add_argument("bucket")
    ingest.add_argument("key")
    ingest.add_argument("--force", action="store_true", help="Ignore cached extraction.")

    ingest_bucket = sub.add_parser("ingest-bucket", help="Ingest every PDF in a bucket.")
    ingest_bucket.add_argument("bucket")
    ingest_bucket.add_argument("--prefix", default="")
    ingest_bucket.add_argument("--limit", type=int, default=0)

    ocr = sub.add_parser("ocr", help="OCR rendered page images into a document's cache.")
    ocr.add_argument("doc_id")
    ocr.add_argument("images", nargs="+", help="Page images in page order.")
    ocr.add_argument("--first-page", type=int, default=1, help="1-based page number of the first image.")
    ocr.add_argument("--total-pages", type=int, default=None)

    search = sub.add_parser("search", help="Search the library index by title.")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=12)

    ask = sub.add_parser("ask", help="Ask a question about an ingested document.")
    ask.add_argument("doc_id")
    ask.add_argument("question")

    resume = sub.add_parser("continue", help="Resume a truncated answer.")
    resume.add_argument("doc_id")
    resume.add_argument("token")
    return parser


def _answer_service(settings: Settings, cache: ExtractionCache) -> AnswerService:
    generation = settings.generation
    provider = OpenAILLMProvider(generation.model)
    notes_provider = OpenAILLMProvider(generation.notes_model, client=provider.client)
    return AnswerService(
        cache,
        provider,
        generation,
        settings.retrieval,
        notes_provider=notes_provider,
    )


def _load_page_images(paths: Sequence[str], first_page: int) -> List[PageImage]:
    if first_page < 1:
        raise InvalidRequestError("--first-page must be 1 or greater.")
    pages: List[PageImage] = []
    for offset, raw in enumerate(paths):
        path = Path(raw)
        if not path.is_file():
            raise InvalidRequestError(f"Page image not found: {raw}")
        pages.append(PageImage(page_index=first_page - 1 + offset, image=path.read_bytes()))
    return pages


def _run_ocr(
    args: argparse.Namespace,
    settings: Settings,
    cache: ExtractionCache,
    orchestrator: IngestionOrchestrator,
) -> Dict[str, Any]:
    pages = _load_page_images(args.images, args.first_page)
    ocr = OpenAIPageOcr(settings.ocr.model, max_output_tokens=settings.ocr.max_output_tokens)
    runner = OcrBatchRunner(ocr, cache, settings.ocr, finalize=orchestrator.finalize_ocr)
    result = runner.run(args.doc_id, pages, total_pages=args.total_pages)
    manifest = result.manifest
    return {
        "docId": args.doc_id,
        "completed": [index + 1 for index in result.completed],
        "failed": {str(index + 1): message for index, message in sorted(result.failed.items())},
        "flushes": result.flushes,
        "method": manifest.method if manifest else None,
        "ranges": [item.model_dump() for item in manifest.ranges] if manifest else [],
    }


def run(args: argparse.Namespace, settings: Settings) -> Any:
    library = LocalBlobStore(args.library_root or settings.library_root)
    cache = ExtractionCache(library, settings.ingest)
    index = LibraryIndex(library, TTLCache(settings.ingest.index_ttl_seconds))

    if args.command in ("ingest", "ingest-bucket", "ocr"):
        orchestrator = IngestionOrchestrator(
            parse_bucket_specs(args.buckets),
            library,
            config=settings.ingest,
            cache=cache,
            index=index,
        )
        if args.command == "ocr":
            return _run_ocr(args, settings, cache, orchestrator)
        if args.command == "ingest":
            return orchestrator.ingest(args.bucket, args.key, force=args.force).to_dict()
        summary = orchestrator.ingest_bucket(args.bucket, prefix=args.prefix, limit=args.limit)
        return {
            "bucket": summary.bucket,
            "total": summary.total,
            "counts": summary.counts,
            "results": [result.to_dict() for result in summary.results],
        }
    if args.command == "search":
        return [record.model_dump(by_alias=True, exclude_none=True) for record in index.search(args.query, args.limit)]
    service = _answer_service(settings, cache)
    if args.command == "ask":
        return service.ask(args.doc_id, args.question).to_dict()
    return service.ask_continue(args.doc_id, args.token).to_dict()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_dir, settings.log_level)
    try:
        payload = run(args, settings)
    except DocQAError as error:
        LOGGER.error("Command %s failed: %s", args.command, error.message)
        print(json.dumps(error.to_dict(), ensure_ascii=False), file=sys.stderr)
        return 1
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))
    return 0


if __name__ == "__main__":  # pragma: no cover - manual invocation
    sys.exit(main())
