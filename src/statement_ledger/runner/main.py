"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from ..config import AppConfig, ImportConfig, create_default_config, load_config
from ..ledger_client import LedgerClient
from ..parsers.templates import BANK_TEMPLATES
from ..schemas.session import ImportSession
from ..services import ImportOrchestrator, ProgressChannel, ProgressEvent, ProgressStep
from ..state_store import AliasExistsError, LedgerStore, StateStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _category_override(value: str) -> tuple[int, str]:
    """Parse an INDEX=CATEGORY argument."""
    index, sep, category = value.partition("=")
    if not sep or not category.strip():
        raise argparse.ArgumentTypeError(f"expected INDEX=CATEGORY, got {value!r}")
    try:
        return int(index), category.strip()
    except ValueError:
        raise argparse.ArgumentTypeError(f"index must be an integer, got {index!r}") from None


def _index_list(value: str) -> list[int]:
    """Parse a comma separated index list such as 0,2,5."""
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected comma separated indices, got {value!r}") from None


def _add_run_arguments(parser: argparse.ArgumentParser) -> None:
    """Arguments shared by preview and import."""
    parser.add_argument("file", type=Path, help="Statement file (CSV or PDF)")
    parser.add_argument("--group", required=True, help="Ledger group to import into")
    parser.add_argument("--payer", required=True, help="Who paid the imported expenses")
    parser.add_argument(
        "--type",
        dest="file_type",
        choices=["auto", "csv", "pdf"],
        default="auto",
        help="File type (default: detect from content)",
    )
    parser.add_argument(
        "--participants",
        type=lambda v: [p.strip() for p in v.split(",") if p.strip()],
        default=None,
        help="Comma separated participants for an equal split",
    )
    parser.add_argument(
        "--categories",
        type=lambda v: [c.strip() for c in v.split(",") if c.strip()],
        default=None,
        help="Comma separated category keys allowed in this import",
    )
    parser.add_argument(
        "--default-category",
        default="other",
        help="Category for transactions without a confident suggestion (default: other)",
    )
    parser.add_argument(
        "--date-format",
        choices=["auto", "MM/DD/YYYY", "DD/MM/YYYY"],
        default="auto",
        help="Date format hint (default: auto)",
    )
    parser.add_argument("--currency", default=None, help="Statement currency (ISO code)")
    parser.add_argument(
        "--sign-convention",
        choices=["auto", "debit_positive", "debit_negative"],
        default="auto",
        help="How the statement reports purchases (default: auto)",
    )
    parser.add_argument(
        "--template",
        choices=sorted(BANK_TEMPLATES),
        default=None,
        help="Bank template to use for column mapping",
    )
    parser.add_argument(
        "--no-duplicates",
        action="store_true",
        help="Skip duplicate detection",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="statement-ledger",
        description="Import bank and card statements into a shared expense ledger",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # preview command
    preview_parser = subparsers.add_parser(
        "preview", help="Parse a statement and show duplicates and categories"
    )
    _add_run_arguments(preview_parser)
    preview_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the preview session as JSON",
    )

    # import command
    import_parser = subparsers.add_parser(
        "import", help="Preview a statement and commit it to the ledger"
    )
    _add_run_arguments(import_parser)
    import_parser.add_argument(
        "--select",
        type=_index_list,
        default=None,
        help="Comma separated transaction indices (default: all but auto-skipped duplicates)",
    )
    import_parser.add_argument(
        "--category",
        dest="overrides",
        type=_category_override,
        action="append",
        default=[],
        metavar="INDEX=CATEGORY",
        help="Override the category of one transaction (repeatable)",
    )
    import_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be imported without writing",
    )

    # alias command
    alias_parser = subparsers.add_parser("alias", help="Manage merchant aliases")
    alias_sub = alias_parser.add_subparsers(dest="alias_command", help="Alias action")
    alias_add = alias_sub.add_parser("add", help="Create a merchant alias")
    alias_add.add_argument("merchant", help="Merchant text as it appears on statements")
    alias_add.add_argument("name", help="Display name for the merchant")
    alias_add.add_argument("--category", default=None, help="Category key for the merchant")
    alias_list = alias_sub.add_parser("list", help="List aliases by usage")
    alias_list.add_argument("--limit", type=int, default=50, help="Maximum aliases (default: 50)")
    alias_delete = alias_sub.add_parser("delete", help="Delete an alias")
    alias_delete.add_argument("alias_id", type=int, help="Alias ID")

    # status command
    subparsers.add_parser("status", help="Show store statistics")

    # init command
    init_parser = subparsers.add_parser("init", help="Write a default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )

    return parser


def build_import_config(parsed: argparse.Namespace, config: AppConfig) -> ImportConfig:
    """Build the run configuration from CLI arguments."""
    split_rule = None
    if parsed.participants:
        split_rule = {"type": "equal", "participants": parsed.participants}
    return ImportConfig.from_dict(
        {
            "ledger_group_id": parsed.group,
            "default_payer": parsed.payer,
            "split_rule": split_rule,
            "default_category_key": parsed.default_category,
            "detect_duplicates": not parsed.no_duplicates,
            "available_categories": parsed.categories or (),
            "date_format_hint": parsed.date_format,
            "currency": parsed.currency or config.defaults.currency,
            "sign_convention": parsed.sign_convention,
            "bank_template": parsed.template,
        }
    )


def build_ledger_store(config: AppConfig, store: StateStore) -> LedgerStore:
    """Select the ledger backend named in the config."""
    if config.ledger.backend == "http":
        return LedgerClient(
            base_url=config.ledger.base_url,
            token=config.ledger.token,
            timeout=config.ledger.timeout_seconds,
            max_retries=config.ledger.max_retries,
            backoff_factor=config.ledger.backoff_factor,
        )
    return store


def _build_orchestrator(config: AppConfig) -> ImportOrchestrator | None:
    store = StateStore(config.state_db_path)
    ledger = build_ledger_store(config, store)
    if isinstance(ledger, LedgerClient):
        print(f"  → Connecting to ledger: {config.ledger.base_url}")
        if not ledger.test_connection():
            print("❌ Failed to connect to the ledger service")
            print("   Check LEDGER_URL and LEDGER_TOKEN")
            return None
    return ImportOrchestrator(ledger_store=ledger, alias_store=store, app_config=config)


def _progress_printer() -> ProgressChannel:
    """Channel that prints one line per pipeline step."""
    seen: set[ProgressStep] = set()

    def show(event: ProgressEvent) -> None:
        if event.step == ProgressStep.IMPORTING and event.total:
            print(f"\r  → importing {event.current}/{event.total}", end="", flush=True)
            if event.current == event.total:
                print()
        elif event.step not in seen:
            seen.add(event.step)
            print(f"  → {event.step.value.replace('_', ' ')}")

    return ProgressChannel(show)


def _read_file(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except OSError as e:
        print(f"❌ Cannot read {path}: {e}")
        return None


def _print_session(session: ImportSession) -> None:
    selected = set(session.default_selection())
    print()
    print(f"📄 {len(session.transactions)} transaction(s)")
    print("=" * 78)
    for index, tx in enumerate(session.transactions):
        verdict = session.duplicate_verdicts[index]
        suggestion = session.category_suggestions[index]
        mark = "x" if index in selected else " "
        flag = ""
        if verdict.auto_skip:
            flag = f"  DUPLICATE {verdict.highest_confidence:.0%}"
        elif verdict.needs_review:
            flag = f"  review {verdict.highest_confidence:.0%}"
        category = suggestion.category
        if suggestion.below_threshold:
            category += " (?)"
        print(
            f"  [{mark}] {index:>3}  {tx.date.isoformat()}  {tx.amount:>10} {tx.currency}"
            f"  {tx.description[:30]:<30}  {category}{flag}"
        )

    if session.parse_errors:
        print()
        print(f"⚠️  {len(session.parse_errors)} row(s) skipped:")
        for error in session.parse_errors[:20]:
            print(f"   - {error}")
        if len(session.parse_errors) > 20:
            print(f"   ... and {len(session.parse_errors) - 20} more")
    for warning in session.warnings:
        print(f"⚠️  {warning}")


def _print_error(descriptor) -> None:
    print(f"❌ {descriptor.user_message}")
    print(f"   {descriptor.message}")
    for suggestion in descriptor.suggestions:
        print(f"   • {suggestion}")


def cmd_preview(
    config: AppConfig,
    path: Path,
    import_config: ImportConfig,
    file_type: str,
    as_json: bool = False,
) -> int:
    """Preview a statement without writing anything."""
    data = _read_file(path)
    if data is None:
        return 1

    orchestrator = _build_orchestrator(config)
    if orchestrator is None:
        return 1

    progress = None if as_json else _progress_printer()
    if not as_json:
        print(f"🔍 Previewing {path.name}...")
    session = orchestrator.preview_import(data, file_type, import_config, progress=progress)

    if as_json:
        print(json.dumps(session.to_dict(), indent=2))
        return 0 if session.success else 1

    if session.error is not None:
        _print_error(session.error)
        return 1
    if session.requires_image_fallback:
        print("⚠️  This PDF has no text layer; image-based extraction is required")
        return 1

    _print_session(session)
    return 0


def cmd_import(
    config: AppConfig,
    path: Path,
    import_config: ImportConfig,
    file_type: str,
    selected: list[int] | None,
    overrides: list[tuple[int, str]],
    dry_run: bool = False,
) -> int:
    """Preview a statement and commit the selection."""
    data = _read_file(path)
    if data is None:
        return 1

    orchestrator = _build_orchestrator(config)
    if orchestrator is None:
        return 1

    print(f"📥 Importing {path.name}...")
    if dry_run:
        print("  ℹ️  DRY RUN mode - no changes will be made")

    progress = _progress_printer()
    session = orchestrator.preview_import(data, file_type, import_config, progress=progress)
    if session.error is not None:
        _print_error(session.error)
        return 1
    if session.requires_image_fallback:
        print("⚠️  This PDF has no text layer; image-based extraction is required")
        return 1

    _print_session(session)
    if dry_run:
        return 0

    result = orchestrator.commit_import(
        session,
        selected_indices=selected,
        category_overrides=dict(overrides),
        progress=progress,
    )

    summary = result.summary
    print()
    print("📊 Import Results")
    print("=" * 40)
    print(f"  Transactions:        {summary.total_transactions}")
    print(f"  Selected:            {summary.selected}")
    print(f"  Imported:            {summary.imported}")
    print(f"  Duplicates skipped:  {summary.duplicates_skipped}")
    print(f"  Errors:              {summary.errors}")
    print(f"  Duration:            {result.duration_ms}ms")
    print()

    if result.success:
        print(f"✓ Import completed (batch {result.import_batch_id})")
        return 0

    _print_error(result.error)
    return 1


def cmd_alias(
    config: AppConfig,
    action: str | None,
    merchant: str | None = None,
    name: str | None = None,
    category: str | None = None,
    alias_id: int | None = None,
    limit: int = 50,
) -> int:
    """Manage merchant aliases."""
    store = StateStore(config.state_db_path)

    if action == "add":
        try:
            alias = store.create(merchant or "", name or "", category)
        except (ValueError, AliasExistsError) as e:
            print(f"❌ {e}")
            return 1
        print(f"✓ Alias [{alias.id}] {alias.merchant_key!r} → {alias.alias_name}")
        return 0

    if action == "list":
        aliases = store.list_aliases(limit=limit)
        if not aliases:
            print("No aliases")
            return 0
        for alias in aliases:
            print(
                f"  [{alias.id}] {alias.merchant_key:<30} → {alias.alias_name}"
                f" ({alias.category or '-'}, used {alias.usage_count}x)"
            )
        return 0

    if action == "delete":
        if store.delete_alias(alias_id):
            print(f"✓ Deleted alias {alias_id}")
            return 0
        print(f"❌ Alias {alias_id} not found")
        return 1

    print("Usage: statement-ledger alias {add,list,delete}")
    return 1


def cmd_status(config: AppConfig) -> int:
    """Show store statistics."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats()

    print("\n📊 Store Status")
    print("=" * 40)
    print(f"  Ledger backend:    {config.ledger.backend}")
    print(f"  Ledger entries:    {stats['ledger_entries']}")
    print(f"  Import batches:    {stats['import_batches']}")
    print(f"  Groups:            {stats['groups']}")
    print(f"  Merchant aliases:  {stats['merchant_aliases']}")
    print()

    return 0


def cmd_init(config_path: Path, force: bool = False) -> int:
    """Write a default config file."""
    if config_path.exists() and not force:
        print(f"❌ {config_path} already exists (use --force to overwrite)")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init":
        return cmd_init(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "preview":
        return cmd_preview(
            config,
            parsed.file,
            build_import_config(parsed, config),
            parsed.file_type,
            as_json=parsed.json,
        )
    elif parsed.command == "import":
        return cmd_import(
            config,
            parsed.file,
            build_import_config(parsed, config),
            parsed.file_type,
            selected=parsed.select,
            overrides=parsed.overrides,
            dry_run=parsed.dry_run,
        )
    elif parsed.command == "alias":
        return cmd_alias(
            config,
            parsed.alias_command,
            merchant=getattr(parsed, "merchant", None),
            name=getattr(parsed, "name", None),
            category=getattr(parsed, "category", None),
            alias_id=getattr(parsed, "alias_id", None),
            limit=getattr(parsed, "limit", 50),
        )
    elif parsed.command == "status":
        return cmd_status(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
