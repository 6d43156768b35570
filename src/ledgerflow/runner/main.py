"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..extraction import GeminiExtractor
from ..ledger import BalanceLedger, LedgerError
from ..pipeline.processor import MessageProcessor, ProcessingStatus
from ..rules import generate_account_rules
from ..schemas import RuleValidationError
from ..state_store import CacheStore
from ..store_client import StoreClient, StoreError

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledgerflow",
        description="Turn financial messages into ledger transactions and balances",
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

    # process command
    process_parser = subparsers.add_parser("process", help="Process one financial message")
    process_parser.add_argument("text", type=str, help="Message text (bank SMS, email, manual)")
    process_parser.add_argument(
        "--user-id",
        type=str,
        default=None,
        help="Owner user ID (default: pipeline.default_user_id)",
    )
    process_parser.add_argument(
        "--source",
        type=str,
        default=None,
        help="Channel tag (default: pipeline.default_source)",
    )
    process_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the structured result as JSON",
    )

    # balance command
    balance_parser = subparsers.add_parser("balance", help="Show an account balance")
    balance_parser.add_argument("account_id", type=str, help="Account ID")

    # rules command
    rules_parser = subparsers.add_parser("rules", help="Inspect and generate automation rules")
    rules_sub = rules_parser.add_subparsers(dest="rules_command", help="Rules command")

    list_parser = rules_sub.add_parser("list", help="List active rules by priority")
    list_parser.add_argument("--user-id", type=str, default=None, help="Owner user ID")

    generate_parser = rules_sub.add_parser(
        "generate-accounts", help="Build account detection rules from the user's accounts"
    )
    generate_parser.add_argument("--user-id", type=str, default=None, help="Owner user ID")
    generate_parser.add_argument(
        "--apply",
        action="store_true",
        help="Create the generated rules instead of only printing them",
    )

    # init-config command
    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )

    return parser


def _store(config: Config) -> StoreClient:
    return StoreClient(
        base_url=config.store.base_url,
        service_key=config.store.service_key,
        timeout=config.store.timeout_seconds,
        max_retries=config.store.max_retries,
    )


def _check(config: Config, sections: tuple[str, ...]) -> bool:
    """Print validation errors for the given config sections."""
    errors = [e for e in config.validate() if e.startswith(sections)]
    if errors:
        print("❌ Invalid configuration:")
        for error in errors:
            print(f"   - {error}")
        return False
    return True


def cmd_process(
    config: Config,
    text: str,
    user_id: str | None = None,
    source: str | None = None,
    as_json: bool = False,
) -> int:
    """Process one message through the pipeline."""
    if not _check(config, ("store.", "extractor.", "pipeline.")):
        return 1

    cache = CacheStore(config.cache.db_path)
    store = _store(config)
    ledger = BalanceLedger(store, cache, cache_ttl_seconds=config.cache.balance_ttl_seconds)

    with GeminiExtractor(config.extractor, cache, timezone=config.pipeline.timezone) as extractor:
        processor = MessageProcessor(store, extractor, config.pipeline, ledger=ledger)
        result = processor.process(text, user_id=user_id, source=source)

    if as_json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return 0 if result.status != ProcessingStatus.FAILED else 1

    if result.status == ProcessingStatus.SKIPPED:
        print(f"ℹ️  Not a transaction ({result.skip_reason}); logged as skipped")
        return 0

    if result.status == ProcessingStatus.FAILED:
        print(f"❌ Could not process message: {result.error}")
        if result.inconsistent:
            print("⚠️  Some entries were saved before the failure; the ledger needs repair:")
            for tx in result.transactions:
                print(f"   - {tx.id} ({tx.type.value}, account {tx.account_id})")
        return 1

    info = result.transfer_info
    if info is not None and info.is_internal_transfer:
        print(f"✅ Internal transfer via '{info.rule_name}' to *{info.destination_phone}")
    else:
        print("✅ Transaction registered")

    for tx in result.transactions:
        print(f"  💰 {tx.amount} {tx.type.value}  {tx.description}")
        print(f"     📅 {tx.date} {tx.time}  💳 {tx.account_id}")
        if tx.duplicate_of:
            print(f"     ⚠️  Possible duplicate of {tx.duplicate_of} (pending review)")
        if tx.applied_rules:
            names = ", ".join(rule.rule_name for rule in tx.applied_rules)
            print(f"     🔧 Rules: {names}")
    return 0


def cmd_balance(config: Config, account_id: str) -> int:
    """Show an account balance (cached while fresh)."""
    if not _check(config, ("store.",)):
        return 1

    ledger = BalanceLedger(
        _store(config),
        CacheStore(config.cache.db_path),
        cache_ttl_seconds=config.cache.balance_ttl_seconds,
    )
    try:
        balance = ledger.get_balance(account_id)
    except (LedgerError, StoreError) as e:
        print(f"❌ {e}")
        return 1

    print(f"📊 Balance {account_id}: {balance}")
    return 0


def cmd_rules_list(config: Config, user_id: str | None) -> int:
    """List a user's active rules."""
    user_id = user_id or config.pipeline.default_user_id
    if not user_id:
        print("❌ --user-id is required (or set pipeline.default_user_id)")
        return 1
    if not _check(config, ("store.",)):
        return 1

    try:
        rules = _store(config).list_rules(user_id)
    except StoreError as e:
        print(f"❌ {e}")
        return 1

    if not rules:
        print("No active rules")
        return 0

    print(f"\n🔧 Rules for {user_id}")
    print("=" * 40)
    for rule in rules:
        phone = f"  📱 *{rule.match_phone}" if rule.match_phone else ""
        print(f"  [{rule.priority:>4}] {rule.name} ({rule.rule_type.value}, {rule.condition_logic.value}){phone}")
    print()
    return 0


def cmd_rules_generate(config: Config, user_id: str | None, apply: bool) -> int:
    """Generate account detection rules, optionally creating them."""
    user_id = user_id or config.pipeline.default_user_id
    if not user_id:
        print("❌ --user-id is required (or set pipeline.default_user_id)")
        return 1
    if not _check(config, ("store.",)):
        return 1

    store = _store(config)
    try:
        rules = generate_account_rules(user_id, store.list_accounts(user_id))
    except StoreError as e:
        print(f"❌ {e}")
        return 1

    if not rules:
        print("No accounts eligible for account detection rules")
        return 0

    for rule in rules:
        keywords = ", ".join(rule.conditions.raw_text_contains or ())
        print(f"  📄 {rule.name}: raw text contains [{keywords}] -> {rule.actions.set_account}")

    if not apply:
        print(f"\n✓ {len(rules)} rule(s) generated (use --apply to create them)")
        return 0

    try:
        created = store.bulk_create_rules(rules)
    except (StoreError, RuleValidationError) as e:
        print(f"❌ {e}")
        return 1

    print(f"\n✓ Created {len(created)} rule(s)")
    return 0


def cmd_init_config(config_path: Path, force: bool = False) -> int:
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

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "process":
        return cmd_process(config, parsed.text, parsed.user_id, parsed.source, parsed.json)
    elif parsed.command == "balance":
        return cmd_balance(config, parsed.account_id)
    elif parsed.command == "rules":
        if parsed.rules_command == "list":
            return cmd_rules_list(config, parsed.user_id)
        elif parsed.rules_command == "generate-accounts":
            return cmd_rules_generate(config, parsed.user_id, parsed.apply)
        parser.print_help()
        return 1
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
