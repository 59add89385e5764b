#!/usr/bin/env python3
"""
Main CLI entrypoint for field expense tracking.
"""

import argparse
import json
import sys
from pathlib import Path

from field_expenses.core.categorization import load_rules
from field_expenses.core.config import AppConfig, ConfigResolver, SETTINGS_PATH, save_setting
from field_expenses.core.database import (SETUP_SQL, SchemaMissingError, StoreAuthError,
                                          StoreError, build_store)
from field_expenses.core.fuel import reconcile
from field_expenses.core.llm import ExtractionError, LLMProvider, build_extractor
from field_expenses.core.mapping import NUMERIC_FIELDS, ATTR_NAMES, to_app_dict
from field_expenses.core.models import (CarType, FuelEntry, FuelType, RoadType, coerce_category,
                                        DEFAULT_OPERATION, PENDING_OPERATION)
from field_expenses.core.operations import (OperationsCache, OperationsSyncError,
                                            current_month_sheet, fetch_sheet_operations)
from field_expenses.core.processor import ExpenseTracker
from field_expenses.core.reporting import category_label, report_row, totals
from field_expenses.core.statements import StatementFormatError
from field_expenses.core.utils import money_fmt, parse_br_amount, to_iso_date, today_iso
from field_expenses.core.validators import ValidationError

CONFIG_KEYS = [
    "FIELD_EXPENSES_USER", "FIELD_EXPENSES_DB_URL", "FIELD_EXPENSES_DB_KEY",
    "FIELD_EXPENSES_DB_PATH", "FIELD_EXPENSES_DB_TABLE", "LLM_PROVIDER", "LLM_MODEL",
    "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "AZURE_OPENAI_API_KEY", "AZURE_OPENAI_ENDPOINT",
    "AZURE_OPENAI_API_VERSION", "OPERATIONS_SHEET_ID", "FIELD_EXPENSES_OPERATIONS_CACHE",
]
SECRET_KEYS = {"FIELD_EXPENSES_DB_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "AZURE_OPENAI_API_KEY"}


def _amount(value: str) -> float:
    amount = parse_br_amount(value)
    if amount is None:
        raise argparse.ArgumentTypeError(f"invalid amount: {value!r}")
    return amount


def _date(value: str) -> str:
    """Accept YYYY-MM-DD or DD/MM/YYYY."""
    iso = to_iso_date(value)
    if iso is None:
        raise argparse.ArgumentTypeError(f"invalid date: {value!r}")
    return iso


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="field-expenses",
        description="Track field expenses: scan receipts, log fuel trips, import toll statements, export reports",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Read a receipt photo and save it under an operation
  field-expenses scan ./nota.jpg --operation "Obra Centro"

  # Log a 120 km trip at R$ 5,89/l with a car doing 11 km/l
  field-expenses fuel --origin Campinas --destination Sorocaba --distance 120 --price 5,89 --consumption 11

  # Preview a toll statement, then import it
  field-expenses import ./extrato.csv
  field-expenses import ./extrato.csv --confirm

  # Copy transactions between users through JSON
  field-expenses --user ana list --out ana.json
  field-expenses --user bruno import ana.json --confirm

  # Export spreadsheet, summary PDF and receipts ZIP
  field-expenses export --out ./reports
        """
    )
    parser.add_argument("--user", help="Owner id (default: FIELD_EXPENSES_USER)")
    parser.add_argument("--db-path", help="Local SQLite database (default: ./field_expenses.sqlite)")
    parser.add_argument("--db-url", help="Hosted backend URL; enables the remote store together with its key")
    parser.add_argument("--llm-provider", choices=[p.value for p in LLMProvider],
                        help="Extraction provider (default: openai, or LLM_PROVIDER env var)")
    parser.add_argument("--llm-model", help="Model name (uses provider default if not specified)")
    parser.add_argument("--no-llm", action="store_true",
                        help="Disable extraction; receipts are filled in manually")
    parser.add_argument("--env-file", default=".env", help="dotenv file to read (default: ./.env)")
    parser.add_argument("--settings", default=str(SETTINGS_PATH),
                        help=f"User settings file (default: {SETTINGS_PATH})")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Show detailed information for debugging")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    p = sub.add_parser("scan", help="Read a receipt and save it as an expense")
    p.add_argument("path", type=Path)
    p.add_argument("--operation", default=DEFAULT_OPERATION)
    p.add_argument("--date", type=_date, help="Override the date read from the receipt")
    p.add_argument("--amount", type=_amount, help="Override the amount read from the receipt")
    p.add_argument("--category")
    p.add_argument("--city")
    p.add_argument("--notes")
    p.add_argument("--dry-run", action="store_true", help="Show the draft without saving")

    p = sub.add_parser("fuel", help="Log a fuel reimbursement trip")
    p.add_argument("--date", type=_date, default=None, help="Trip date (default: today)")
    p.add_argument("--origin", required=True)
    p.add_argument("--destination", required=True)
    p.add_argument("--distance", type=_amount, required=True, help="Distance in km")
    p.add_argument("--price", type=_amount, required=True, help="Fuel price per liter")
    p.add_argument("--consumption", type=_amount, default=10.0, help="Car consumption in km/l (default: 10)")
    p.add_argument("--car-type", choices=[c.value for c in CarType], default=CarType.PROPRIO.value)
    p.add_argument("--road-type", choices=[r.value for r in RoadType], default=RoadType.CIDADE.value)
    p.add_argument("--fuel-type", choices=[f.value for f in FuelType], default=FuelType.GASOLINA.value)
    p.add_argument("--operation", default=DEFAULT_OPERATION)
    p.add_argument("--receipt-amount", type=_amount, help="Amount on the fuel invoice")
    p.add_argument("--receipt", type=Path, help="Fuel invoice photo or PDF")
    p.add_argument("--dry-run", action="store_true", help="Show the entry without saving")

    p = sub.add_parser("import", help="Preview (and with --confirm, save) a toll/parking statement, "
                                      "or a JSON file written by list --json")
    p.add_argument("path", type=Path)
    p.add_argument("--confirm", action="store_true", help="Save the previewed entries")
    p.add_argument("--operation", help=f"Assign an operation instead of '{PENDING_OPERATION}'")
    p.add_argument("--placeholders", action="store_true",
                   help="Attach a generated receipt PDF to every entry")
    p.add_argument("--rules", type=Path, help="JSON categorization rules")

    p = sub.add_parser("list", help="List saved transactions")
    p.add_argument("--pending", action="store_true", help=f"Only entries with '{PENDING_OPERATION}'")
    p.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    p.add_argument("--out", type=Path, help="Write the transactions as JSON to this file")

    p = sub.add_parser("edit", help="Edit fields of a saved transaction")
    p.add_argument("id")
    p.add_argument("--set", dest="changes", action="append", default=[], metavar="FIELD=VALUE",
                   help="Field to change, e.g. --set operation='Obra Centro' --set distanceKm=80")

    p = sub.add_parser("delete", help="Permanently delete a transaction")
    p.add_argument("id")

    p = sub.add_parser("export", help="Write spreadsheet, CSV, summary PDF and receipts ZIP")
    p.add_argument("--out", type=Path, default=Path("./reports"))

    p = sub.add_parser("sync-operations", help="Refresh active operations from the operations sheet")
    p.add_argument("--sheet", help="Sheet (month) name (default: current month)")
    p.add_argument("--sheet-id", help="Spreadsheet id (default: OPERATIONS_SHEET_ID)")

    p = sub.add_parser("add-operation", help="Add operations to the local active list")
    p.add_argument("names", nargs="+", metavar="NAME")

    p = sub.add_parser("configure", help="Save a setting, or show current settings")
    p.add_argument("key", nargs="?", choices=CONFIG_KEYS)
    p.add_argument("value", nargs="?")

    sub.add_parser("setup-sql", help="Print the SQL that creates or migrates the hosted table")

    return parser


def resolve_config(args) -> AppConfig:
    env_file = Path(args.env_file) if args.env_file else None
    resolver = ConfigResolver(
        overrides={
            "FIELD_EXPENSES_USER": args.user,
            "FIELD_EXPENSES_DB_PATH": args.db_path,
            "FIELD_EXPENSES_DB_URL": args.db_url,
            "LLM_PROVIDER": args.llm_provider,
            "LLM_MODEL": args.llm_model,
        },
        dotenv_path=env_file,
        settings_path=Path(args.settings),
    )
    return AppConfig.from_resolver(resolver)


def build_tracker(args, config: AppConfig) -> ExpenseTracker:
    if not config.user_id:
        raise ValueError("No user configured. Pass --user or run: field-expenses configure FIELD_EXPENSES_USER <id>")

    store = build_store(config)
    extractor = None
    if not args.no_llm:
        extractor = build_extractor(config)
        print(f"[INFO] Extraction: {extractor.provider.value} ({extractor.model})")
    backend = "remote" if config.uses_remote_store else config.db_path
    print(f"[INFO] Store: {backend}")

    operations = OperationsCache(Path(config.operations_cache)).load()
    return ExpenseTracker(store, extractor, config.user_id, operations=operations,
                          verbose=args.verbose)


def print_transactions(transactions):
    for t in transactions:
        row = report_row(t)
        print(f"  {t.id[:8]}  {row['Data']}  {category_label(t)[:16]:<16}  "
              f"{row['Cidade'][:32]:<32}  {t.operation[:20]:<20}  {money_fmt(t.value):>14}")
        if isinstance(t, FuelEntry):
            warning = reconcile(t)
            if warning:
                print(f"    [WARN] {warning}")
    print(f"  Total: {money_fmt(totals(transactions))}")


def parse_changes(pairs):
    changes = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"Expected FIELD=VALUE, got: {pair}")
        key, value = pair.split("=", 1)
        key = key.strip()
        name = ATTR_NAMES.get(key, key)
        if name in NUMERIC_FIELDS:
            amount = parse_br_amount(value)
            if amount is None:
                raise ValueError(f"{key} must be a number, got: {value}")
            changes[key] = amount
        elif name == "date":
            iso = to_iso_date(value)
            if iso is None:
                raise ValueError(f"{key} must be a date (YYYY-MM-DD or DD/MM/YYYY), got: {value}")
            changes[key] = iso
        else:
            changes[key] = value
    return changes


def cmd_scan(tracker: ExpenseTracker, args) -> int:
    result = tracker.scan_receipt(args.path, operation=args.operation)
    draft = result.draft
    for name in ("date", "amount", "category", "city", "notes"):
        value = getattr(args, name)
        if value is not None:
            setattr(draft, name, coerce_category(value) if name == "category" else value)

    for w in result.warnings:
        print(f"[WARN] {w}")
    print(f"[INFO] Draft: {json.dumps({k: v for k, v in to_app_dict(draft).items() if k != 'receiptImage'}, ensure_ascii=False)}")
    if args.dry_run:
        return 0
    saved = tracker.save_receipt(draft)
    print(f"[OK] Saved expense {saved.id} ({money_fmt(saved.amount)})")
    return 0


def cmd_fuel(tracker: ExpenseTracker, args) -> int:
    kwargs = {
        "car_type": args.car_type,
        "road_type": args.road_type,
        "fuel_type": args.fuel_type,
    }
    entry = tracker.new_fuel_entry(
        date=args.date or today_iso(),
        origin=args.origin, destination=args.destination,
        distance_km=args.distance, price_per_liter=args.price, consumption=args.consumption,
        operation=args.operation, receipt_amount=args.receipt_amount,
        receipt_path=args.receipt, **kwargs)

    print(f"[INFO] {entry.origin} -> {entry.destination}: {entry.distance_km:g} km / "
          f"{entry.consumption:g} km/l x {money_fmt(entry.price_per_liter)} = {money_fmt(entry.total_value)}")
    warning = reconcile(entry)
    if warning:
        print(f"[WARN] {warning}")
    op_warning = tracker.check_operation(entry.operation)
    if op_warning:
        print(f"[WARN] {op_warning}")
    if args.dry_run:
        return 0
    saved = tracker.save(entry)
    print(f"[OK] Saved fuel entry {saved.id} ({money_fmt(saved.total_value)})")
    return 0


def cmd_import(tracker: ExpenseTracker, args) -> int:
    if args.rules:
        tracker.rules = load_rules(args.rules)
    result = tracker.preview_statement(args.path, with_placeholders=args.placeholders)
    for w in result.warnings:
        print(f"[WARN] {w}")
    if not result.drafts:
        return 1

    print(f"[INFO] {result.summary()}:")
    print_transactions(result.drafts)
    if not args.confirm:
        print("[INFO] Nothing saved. Re-run with --confirm to import these entries.")
        return 0
    tracker.confirm_import(result.drafts, operation=args.operation)
    return 0


def cmd_list(tracker: ExpenseTracker, args) -> int:
    transactions = tracker.pending() if args.pending else tracker.list()
    if args.out:
        args.out.write_text(json.dumps([to_app_dict(t) for t in transactions], ensure_ascii=False, indent=2),
                            encoding="utf-8")
        print(f"[OK] Wrote {len(transactions)} transaction(s) to {args.out}")
        return 0
    if args.json:
        print(json.dumps([to_app_dict(t) for t in transactions], ensure_ascii=False, indent=2))
        return 0
    if not transactions:
        print("No transactions found.")
        return 0
    print(f"[INFO] {len(transactions)} transaction(s):")
    print_transactions(transactions)
    return 0


def _resolve_id(tracker: ExpenseTracker, prefix: str) -> str:
    """Accept a full id or an unambiguous prefix as printed by ``list``."""
    matches = [t.id for t in tracker.list() if t.id.startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise ValueError(f"Ambiguous id prefix: {prefix}")
    return prefix


def cmd_edit(tracker: ExpenseTracker, args) -> int:
    changes = parse_changes(args.changes)
    if not changes:
        print("[ERROR] Nothing to change; use --set FIELD=VALUE")
        return 1
    updated = tracker.update(_resolve_id(tracker, args.id), changes)
    if updated is None:
        print(f"[ERROR] Transaction not found: {args.id}")
        return 1
    print(f"[OK] Updated {updated.id}")
    print_transactions([updated])
    return 0


def cmd_delete(tracker: ExpenseTracker, args) -> int:
    if not tracker.delete(_resolve_id(tracker, args.id)):
        print(f"[ERROR] Transaction not found: {args.id}")
        return 1
    print(f"[OK] Deleted {args.id}")
    return 0


def cmd_export(tracker: ExpenseTracker, args) -> int:
    transactions = tracker.list()
    if not transactions:
        print("No transactions to export.")
        return 0
    pending = [t for t in transactions if t.operation == PENDING_OPERATION]
    if pending:
        print(f"[WARN] {len(pending)} transaction(s) still have no operation assigned")
    tracker.export(args.out, transactions)
    return 0


def cmd_sync_operations(config: AppConfig, args) -> int:
    sheet_id = args.sheet_id or config.operations_sheet_id
    sheet = args.sheet or current_month_sheet()
    print(f"[INFO] Syncing operations from sheet {sheet}")
    found = fetch_sheet_operations(sheet_id, sheet)
    cache = OperationsCache(Path(config.operations_cache))
    if not found:
        print(f"[WARN] No operations found in sheet {sheet}; keeping the cached list")
        return 0
    cache.save(found)
    print(f"[OK] {len(found)} active operation(s) from sheet {sheet}")
    return 0


def cmd_add_operation(config: AppConfig, args) -> int:
    known = OperationsCache(Path(config.operations_cache)).merge(args.names)
    print(f"[OK] {len(known)} active operation(s)")
    return 0


def cmd_configure(config: AppConfig, args) -> int:
    settings_path = Path(args.settings)
    if args.key is None:
        resolver = ConfigResolver(dotenv_path=Path(args.env_file) if args.env_file else None,
                                  settings_path=settings_path)
        for key in CONFIG_KEYS:
            value = resolver.get(key)
            if value and key in SECRET_KEYS:
                value = value[:4] + "..."
            print(f"  {key} = {value or ''}")
        return 0
    if args.value is None:
        print(f"[ERROR] Missing value for {args.key}")
        return 1
    save_setting(args.key, args.value, settings_path)
    print(f"[OK] Saved {args.key} to {settings_path}")
    return 0


def main(argv=None) -> int:
    """Main CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "setup-sql":
        print(SETUP_SQL)
        return 0

    config = resolve_config(args)
    try:
        if args.command == "configure":
            return cmd_configure(config, args)
        if args.command == "sync-operations":
            return cmd_sync_operations(config, args)
        if args.command == "add-operation":
            return cmd_add_operation(config, args)

        tracker = build_tracker(args, config)
        handler = {
            "scan": cmd_scan,
            "fuel": cmd_fuel,
            "import": cmd_import,
            "list": cmd_list,
            "edit": cmd_edit,
            "delete": cmd_delete,
            "export": cmd_export,
        }[args.command]
        return handler(tracker, args)
    except SchemaMissingError as e:
        print(f"[ERROR] {e}")
        print("[ERROR] The table is missing or outdated. Run this SQL in the database console "
              "(also available via: field-expenses setup-sql):")
        print(e.setup_sql)
        return 1
    except StoreAuthError as e:
        print(f"[ERROR] {e}. Check FIELD_EXPENSES_DB_KEY.")
        return 1
    except ValidationError as e:
        for err in e.errors:
            print(f"[ERROR] {err}")
        return 1
    except StatementFormatError as e:
        print(f"[ERROR] {e}")
        return 1
    except (StoreError, ExtractionError, OperationsSyncError) as e:
        print(f"[ERROR] {e}")
        return 1
    except (ValueError, OSError) as e:
        print(f"[ERROR] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
