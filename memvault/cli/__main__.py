"""
memvault CLI - Command-line interface for memory consolidation and backups.

Usage:
    memvault export [--output FILE] [--exclude-archived] [--exclude-rejected]
    memvault validate FILE [--json]
    memvault import FILE [--strategy S] [--conflict-resolution R] [--dry-run]
    memvault chunk FILE [--model M] [--max-chunk-size N] [--overlap N]
    memvault similarity TEXT_A TEXT_B [--method M]
    memvault consolidate CONTENT [--category C] [--layer N] [--confidence X]
    memvault cleanup [--auto] [--dry-run]
    memvault mcp
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from memvault.backup import (
    ExportOptions,
    build_export_package,
    dumps_package,
    import_package,
    loads_package,
    validate_package,
)
from memvault.chunking import DEFAULT_OVERLAP, chunk_for_model, chunk_text
from memvault.config import Settings, load_settings
from memvault.consolidation import ConsolidationAction, apply_to_dataset, consolidate
from memvault.logging_config import setup_memvault_logging
from memvault.maintenance import (
    CleanupOptions,
    auto_cleanup_on_quota_error,
    cleanup_storage,
    estimate_storage_usage,
    format_size,
)
from memvault.protocols import KeyValueStore, MemvaultError, QuotaExceededError
from memvault.reconcile import CONFLICT_RESOLUTIONS, STRATEGIES, ImportOptions
from memvault.similarity import METHODS, calculate_similarity
from memvault.storage import JsonDirectoryStore, load_dataset, save_dataset
from memvault.types import COLLECTIONS, CandidateInsight, Dataset, MemoryCategory

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

STORE_DIRNAME = "store"


def open_store(settings: Settings) -> JsonDirectoryStore:
    return JsonDirectoryStore(Path(settings.data_dir) / STORE_DIRNAME)


def save_with_cleanup(store: KeyValueStore, dataset: Dataset) -> Dataset:
    """Save the dataset, shrinking it once if the store reports it is full."""
    try:
        save_dataset(store, dataset)
        return dataset
    except QuotaExceededError as e:
        logger.warning(f"{e}; running storage cleanup")
        cleaned, freed = auto_cleanup_on_quota_error(dataset)
        print(f"⚠ Storage full, freed {format_size(max(freed, 0))} by cleanup")
        save_dataset(store, cleaned)
        return cleaned


def _read_text(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _print_counts(label: str, counts) -> None:
    parts = [f"{name}={counts.get(name, 0)}" for name in COLLECTIONS if counts.get(name)]
    print(f"{label}: {', '.join(parts) if parts else 'nothing'}")


# =============================================================================
# Commands
# =============================================================================


def cmd_export(args, settings: Settings):
    """Write a backup package of the local dataset."""
    dataset = load_dataset(open_store(settings))
    options = ExportOptions(
        include_archived=not args.exclude_archived,
        include_rejected=not args.exclude_rejected,
        data_types=args.types or COLLECTIONS,
    )
    package = build_export_package(dataset, options)
    text = dumps_package(package)

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text)
        meta = package["metadata"]
        print(f"✓ Exported {format_size(meta['dataSize'])} to {args.output}")
        _print_counts("  Items", meta["itemCounts"])
    else:
        print(text)


def cmd_validate(args, settings: Settings):
    """Validate a backup package without importing it."""
    try:
        package = loads_package(_read_text(args.file))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON format: {e}") from e
    result = validate_package(package)

    if args.json:
        print(
            json.dumps(
                {
                    "valid": result.valid,
                    "errors": [vars(i) for i in result.errors],
                    "warnings": [vars(i) for i in result.warnings],
                },
                indent=2,
                ensure_ascii=False,
            )
        )
    else:
        print("✓ Package is valid" if result.valid else "✗ Package is invalid")
        for issue in result.errors:
            print(f"  error: {issue}")
        for issue in result.warnings:
            print(f"  warning: {issue}")
    if not result.valid:
        sys.exit(1)


def cmd_import(args, settings: Settings):
    """Import a backup package into the local dataset."""
    options = ImportOptions(strategy=args.strategy, conflict_resolution=args.conflict_resolution)
    store = open_store(settings)
    current = load_dataset(store)
    result = import_package(_read_text(args.file), current, options)

    for warning in result.warnings:
        print(f"⚠ {warning}")
    if not result.success:
        for error in result.errors:
            print(f"✗ {error}", file=sys.stderr)
        sys.exit(1)

    _print_counts("Imported", result.imported)
    if result.conflicts:
        print(f"  Conflicts: {result.conflicts} (resolution: {options.conflict_resolution})")
    if args.dry_run:
        print("Dry run: nothing saved")
        return
    save_with_cleanup(store, result.data)
    print(f"✓ Import complete ({options.strategy})")


def cmd_chunk(args, settings: Settings):
    """Show how a document would be chunked for extraction."""
    text = _read_text(args.file)
    if args.max_chunk_size:
        chunks = chunk_text(text, args.max_chunk_size, args.overlap)
    else:
        chunks = chunk_for_model(text, args.model or settings.default_model, args.overlap)

    if args.json:
        print(
            json.dumps(
                [
                    {
                        "index": c.chunk_index,
                        "start": c.start_index,
                        "end": c.end_index,
                        "text": c.text,
                    }
                    for c in chunks
                ],
                indent=2,
                ensure_ascii=False,
            )
        )
        return
    print(f"{len(text)} characters -> {len(chunks)} chunk(s)")
    for c in chunks:
        preview = c.text[:60].replace("\n", " ")
        print(f"  [{c.chunk_index}] {c.start_index}-{c.end_index} ({len(c.text)} chars) {preview}")


def cmd_similarity(args, settings: Settings):
    """Score two texts."""
    score = calculate_similarity(args.text_a, args.text_b, args.method)
    print(f"{args.method}: {score:.4f}")


def cmd_consolidate(args, settings: Settings):
    """Accept a candidate fact: merge it into a similar memory or create one."""
    raw = {"content": args.content, "layer": args.layer}
    if args.category:
        raw["category"] = args.category
    if args.confidence is not None:
        raw["confidence"] = args.confidence
    if args.evidence_strength is not None:
        raw["evidenceStrength"] = args.evidence_strength
    candidate = CandidateInsight.from_extraction(raw, args.evidence or [])
    if not candidate.content.strip():
        raise ValueError("content must not be empty")

    store = open_store(settings)
    dataset = load_dataset(store)
    result = consolidate(candidate, dataset["memories"], settings.consolidation_config())

    if result.matches:
        best = result.matches[0]
        print(f"Best match: {best.record_id[:8]} ({best.similarity:.2f}, {best.reason})")
    verb = "Merged into" if result.action == ConsolidationAction.MERGE else "Created"
    print(f"✓ {verb} {result.record.id[:8]}: {result.record.content}")
    print(f"  Confidence: {result.record.confidence:.2f}  Layer: L{int(result.record.layer)}")

    if args.dry_run:
        print("Dry run: nothing saved")
        return
    save_with_cleanup(store, apply_to_dataset(result, dataset))


def cmd_cleanup(args, settings: Settings):
    """Apply retention rules to the local dataset."""
    store = open_store(settings)
    dataset = load_dataset(store)
    before = estimate_storage_usage(dataset)

    if args.auto:
        cleaned, freed = auto_cleanup_on_quota_error(dataset, args.target_size)
        print(f"Freed {format_size(max(freed, 0))}")
    else:
        options = CleanupOptions(
            keep_recent_sessions=args.keep_sessions,
            keep_recent_history=args.keep_history,
            keep_recent_uploads=args.keep_uploads,
            delete_rejected_after_days=args.rejected_days,
            archive_after_days=args.archive_days,
        )
        result = cleanup_storage(dataset, options)
        cleaned = result.data
        _print_counts("Cleaned", result.cleaned)

    after = estimate_storage_usage(cleaned)
    print(f"Usage: {format_size(before.total)} -> {format_size(after.total)}")
    print(f"  {after.breakdown}")
    if args.dry_run:
        print("Dry run: nothing saved")
        return
    save_dataset(store, cleaned)


def cmd_mcp(args):
    """Start MCP server."""
    from memvault.mcp.server import main as mcp_main

    mcp_main()


# =============================================================================
# Entry point
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="memvault",
        description="Personal memory consolidation and backup reconciliation",
    )
    parser.add_argument("--data-dir", "-d", help="Data directory (default: $MEMVAULT_DATA_DIR or ~/.memvault)")
    parser.add_argument("--log-level", help="Also log to <data dir>/logs at this level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # export
    p_export = subparsers.add_parser("export", help="Export a backup package")
    p_export.add_argument("--output", "-o", help="Output file (default: stdout)")
    p_export.add_argument("--exclude-archived", action="store_true", help="Skip archived memories")
    p_export.add_argument("--exclude-rejected", action="store_true", help="Skip rejected proposals")
    p_export.add_argument("--types", nargs="+", choices=COLLECTIONS, help="Collections to export")

    # validate
    p_validate = subparsers.add_parser("validate", help="Validate a backup package")
    p_validate.add_argument("file", help="Package file ('-' for stdin)")
    p_validate.add_argument("--json", "-j", action="store_true")

    # import
    p_import = subparsers.add_parser("import", help="Import a backup package")
    p_import.add_argument("file", help="Package file ('-' for stdin)")
    p_import.add_argument("--strategy", "-s", choices=STRATEGIES, default="merge")
    p_import.add_argument(
        "--conflict-resolution", "-r", choices=CONFLICT_RESOLUTIONS, default="new",
        help="How merge handles id collisions (default: new)",
    )
    p_import.add_argument("--dry-run", action="store_true", help="Report without saving")

    # chunk
    p_chunk = subparsers.add_parser("chunk", help="Chunk a document for extraction")
    p_chunk.add_argument("file", help="Text file ('-' for stdin)")
    p_chunk.add_argument("--model", "-m", help="Model name (default: configured model)")
    p_chunk.add_argument("--max-chunk-size", type=int, help="Explicit character budget")
    p_chunk.add_argument("--overlap", type=int, default=DEFAULT_OVERLAP)
    p_chunk.add_argument("--json", "-j", action="store_true")

    # similarity
    p_similarity = subparsers.add_parser("similarity", help="Score two texts")
    p_similarity.add_argument("text_a")
    p_similarity.add_argument("text_b")
    p_similarity.add_argument("--method", choices=sorted(METHODS), default="combined")

    # consolidate
    p_consolidate = subparsers.add_parser("consolidate", help="Merge or add a candidate fact")
    p_consolidate.add_argument("content", help="Candidate fact")
    p_consolidate.add_argument("--category", "-c", choices=[c.value for c in MemoryCategory])
    p_consolidate.add_argument("--layer", "-l", type=int, choices=range(5), default=1)
    p_consolidate.add_argument("--confidence", type=float, help="0.0-1.0 (default 0.7)")
    p_consolidate.add_argument("--evidence-strength", type=float, help="0.0-1.0 (default 0.6)")
    p_consolidate.add_argument("--evidence", "-e", action="append", help="Evidence quote (repeatable)")
    p_consolidate.add_argument("--dry-run", action="store_true", help="Report without saving")

    # cleanup
    p_cleanup = subparsers.add_parser("cleanup", help="Apply retention rules")
    p_cleanup.add_argument("--auto", action="store_true", help="Shrink below --target-size")
    p_cleanup.add_argument("--target-size", type=int, default=2 * 1024 * 1024)
    p_cleanup.add_argument("--keep-sessions", type=int, default=100)
    p_cleanup.add_argument("--keep-history", type=int, default=200)
    p_cleanup.add_argument("--keep-uploads", type=int, default=50)
    p_cleanup.add_argument("--rejected-days", type=int, default=30)
    p_cleanup.add_argument("--archive-days", type=int, default=90, help="0 disables archiving")
    p_cleanup.add_argument("--dry-run", action="store_true", help="Report without saving")

    # mcp
    subparsers.add_parser("mcp", help="Start MCP server (stdio transport)")

    return parser


COMMANDS = {
    "export": cmd_export,
    "validate": cmd_validate,
    "import": cmd_import,
    "chunk": cmd_chunk,
    "similarity": cmd_similarity,
    "consolidate": cmd_consolidate,
    "cleanup": cmd_cleanup,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_settings(Path(args.data_dir) if args.data_dir else None)
    if args.log_level:
        setup_memvault_logging(args.log_level, settings.data_dir)

    # Dispatch with error handling
    try:
        if args.command == "mcp":
            cmd_mcp(args)
        else:
            COMMANDS[args.command](args, settings)
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        sys.exit(1)
    except (MemvaultError, OSError) as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
