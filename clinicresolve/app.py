import argparse
import json
from typing import List

from . import __version__
from .aggregator import MultiSourceAggregator, sort_by_recency
from .cache import open_hint_cache
from .config import Settings
from .dates import split_upcoming_past, to_ymd, today
from .env import load_env
from .errors import MalformedResponse
from .http import ClinicApi
from .identity import display_name, record_code, record_id
from .logger import get_logger
from .lookup import LookupResult, RecordLookup
from .models import DOCTOR, ENTITY_KINDS, PATIENT, EntityReference, SourceRecord
from .resolver import FallbackResolver
from .sources import (
    doctor_appointment_strategies,
    entity_strategies,
    lab_catalog,
    normalize_appointment,
    patient_sources,
)


def _reference(kind: str, args: argparse.Namespace) -> EntityReference:
    try:
        return EntityReference(kind=kind, id=args.id, code=args.code, name=args.name)
    except ValueError as e:
        raise SystemExit(str(e))


def _print_record(record: SourceRecord) -> None:
    stamp = to_ymd(record.timestamp) or "unknown date"
    print(f"[{record.source}] {stamp}  {record.type}")
    print(f"  Status: {record.status}  Priority: {record.priority}  By: {record.actor_name}")
    if record.attachment_url:
        print(f"  Attachment: {record.attachment_url}")


def cmd_resolve(args: argparse.Namespace, settings: Settings) -> None:
    ref = _reference(args.kind, args)
    api = ClinicApi(settings.base_urls)
    strategies = entity_strategies(api, ref.kind, settings.probe_timeout_ms)
    resolver = FallbackResolver(cache=open_hint_cache(settings.hint_store))
    outcome = resolver.resolve(ref, strategies)

    print(f"Fetch path: {outcome.fetch_path}")
    if not outcome.found:
        print("Not found.")
        raise SystemExit(1)
    print(f"Strategy: {outcome.strategy_used}{' (cached hint)' if outcome.from_cache else ''}")
    print(f"ID: {record_id(outcome.record)}")
    print(f"  Code: {record_code(outcome.record) or '-'}")
    print(f"  Name: {display_name(outcome.record) or '-'}")
    if len(outcome.candidates) > 1:
        print(f"  ({len(outcome.candidates)} candidates, picked one)")
    if args.json:
        print(json.dumps(outcome.record, indent=2, default=str))


def _show_lookup(result: LookupResult) -> None:
    print(f"Tier: {result.tier}")
    print(f"Fetch path: {' > '.join(result.fetch_path) or '-'}")
    view = result.view
    if result.low_confidence:
        print("[warn] Records matched heuristically from the lab catalog; verify before use.")
    if view.partial:
        print(f"[warn] Partial results. Failed sources: {', '.join(view.failed_sources)}")
    elif view.total_failure:
        print(f"[warn] Every source failed: {', '.join(view.failed_sources)}")
    if not view.records:
        print("No records found.")
        return
    print(f"Found {len(view)} records:\n")
    for record in sort_by_recency(view.records):
        _print_record(record)


def cmd_records(args: argparse.Namespace, settings: Settings) -> None:
    ref = _reference(PATIENT, args)
    api = ClinicApi(settings.base_urls)
    cache = open_hint_cache(settings.hint_store)
    catalog = None if args.no_catalog else lab_catalog(api, settings.source_timeout_ms, settings.day_first)

    with MultiSourceAggregator() as aggregator:
        lookup = RecordLookup(
            FallbackResolver(cache=cache),
            aggregator,
            entity_strategies(api, PATIENT, settings.probe_timeout_ms),
            patient_sources(api, settings.source_timeout_ms, settings.day_first),
            catalog=catalog,
        )
        lookup.deliver(ref, _show_lookup)


def _appointments(candidates: List[dict], day_first: bool) -> List[SourceRecord]:
    logger = get_logger()
    records = []
    for item in candidates:
        try:
            records.append(normalize_appointment(item, day_first))
        except MalformedResponse as e:
            logger.warning("Skipping appointment", error=str(e))
    return records


def cmd_appointments(args: argparse.Namespace, settings: Settings) -> None:
    try:
        ref = EntityReference(kind=DOCTOR, id=args.doctor_id, name=args.doctor_name)
    except ValueError:
        raise SystemExit("Provide --doctor-id and/or --doctor-name")
    api = ClinicApi(settings.base_urls)
    strategies = doctor_appointment_strategies(api, timeout_ms=settings.probe_timeout_ms)
    outcome = FallbackResolver().resolve(ref, strategies)

    print(f"Fetch path: {outcome.fetch_path}")
    if not outcome.found:
        print("No appointments found.")
        return

    records = _appointments(outcome.candidates, settings.day_first)
    upcoming, past, undated = split_upcoming_past(records)
    if args.today:
        current = to_ymd(today())
        upcoming = [r for r in upcoming if to_ymd(r.timestamp) == current]
        past = []

    print(f"Upcoming ({len(upcoming)}):")
    for record in upcoming:
        time_ = record.raw.get("appointment_time") or ""
        print(f"  {to_ymd(record.timestamp)} {time_}  {record.actor_name}  [{record.status}]")
    if not args.today:
        print(f"Past ({len(past)}):")
        for record in past:
            print(f"  {to_ymd(record.timestamp)}  {record.actor_name}  [{record.status}]")
    if undated:
        print(f"[warn] {undated} appointment(s) with unreadable dates not shown")


def cmd_hints(args: argparse.Namespace, settings: Settings) -> None:
    cache = open_hint_cache(settings.hint_store)
    if args.action == "list":
        items = cache.items()
        if not items:
            print("No hints stored.")
            return
        print(f"Found {len(items)} hints in {settings.hint_store}:\n")
        for key, resolved in items:
            print(f"{key} -> {resolved}")
    elif args.action == "clear":
        cache.clear()
        print("Cleared.")
    else:
        if not args.key:
            raise SystemExit("forget needs a KEY, e.g. patient:p-1001")
        if cache.delete(args.key):
            print(f"Forgot {args.key}")
        else:
            print(f"No hint for {args.key}")


def main():
    # Load .env if present (CLINIC_API_BASE_URLS, CLINIC_DATE_ORDER, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="clinicresolve", description="Clinic record lookup with degraded-mode fallbacks")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    res = subparsers.add_parser("resolve", help="Resolve one entity by id, code and/or name")
    res.add_argument("--kind", required=True, choices=ENTITY_KINDS, help="Entity kind")
    res.add_argument("--id", help="Record id")
    res.add_argument("--code", help="Human-readable code (e.g. patient code)")
    res.add_argument("--name", help="Display name; matched loosely")
    res.add_argument("--json", action="store_true", help="Also dump the resolved record as JSON")
    res.set_defaults(func=cmd_resolve)

    rec = subparsers.add_parser("records", help="Aggregate lab tests, lab history, test results and prescriptions of a patient")
    rec.add_argument("--id", help="Patient record id")
    rec.add_argument("--code", help="Patient code")
    rec.add_argument("--name", help="Patient name")
    rec.add_argument("--no-catalog", action="store_true", help="Skip the heuristic lab catalog fallback")
    rec.set_defaults(func=cmd_records)

    apt = subparsers.add_parser("appointments", help="List a doctor's appointments split into upcoming and past")
    apt.add_argument("--doctor-id", help="Doctor record id")
    apt.add_argument("--doctor-name", help="Doctor display name (\"Dr.\" prefix optional)")
    apt.add_argument("--today", action="store_true", help="Only show today's appointments")
    apt.set_defaults(func=cmd_appointments)

    hnt = subparsers.add_parser("hints", help="Inspect or clear the resolution hint cache")
    hnt.add_argument("action", choices=["list", "clear", "forget"], help="What to do")
    hnt.add_argument("key", nargs="?", help="Hint key for 'forget', e.g. patient:p-1001")
    hnt.set_defaults(func=cmd_hints)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        try:
            settings = Settings.from_env()
        except ValueError as e:
            raise SystemExit(f"Configuration error: {e}")
        get_logger(level=settings.log_level, log_dir=settings.log_dir)
        args.func(args, settings)
        get_logger().log_metrics_summary()
        return

    parser.print_help()


if __name__ == "__main__":
    main()
