from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import os
from typing import List, Optional

from ancestry_ledger.analysis import analyze_record, summarize
from ancestry_ledger.coordinator import VerificationCoordinator
from ancestry_ledger.errors import AncestryLedgerError
from ancestry_ledger.ledger import HashChainedLedger
from ancestry_ledger.settings import Settings
from ancestry_ledger.store import RecordStore
from fhe_gateway.oracle import LocalOracle


def load_settings(args) -> Settings:
    settings = Settings.load()
    if args.out:
        settings = dataclasses.replace(settings, STATE_DIR=args.out)
    return settings

def open_coordinator(settings: Settings) -> VerificationCoordinator:
    """Replay the store from its ledger and wire it to the local oracle."""
    os.makedirs(settings.STATE_DIR, exist_ok=True)
    oracle = LocalOracle.load_or_generate(settings.oracle_keys_path)
    ledger = HashChainedLedger(settings.ledger_path)
    store = RecordStore.from_ledger(
        ledger,
        settings.store_address,
        oracle.verifier,
        oracle.decryption_public_pem,
        strict=settings.STRICT_LEDGER,
    )
    oracle.attach(store)
    return VerificationCoordinator(store, oracle, oracle_timeout=settings.oracle_timeout)

def cmd_init_oracle(args):
    settings = load_settings(args)
    existed = os.path.exists(settings.oracle_keys_path)
    LocalOracle.load_or_generate(settings.oracle_keys_path)
    if existed:
        print(f"⚠️  Oracle keys already exist: {settings.oracle_keys_path}")
        return
    print("✅ Oracle keys created")
    print(f"   path: {settings.oracle_keys_path}")
    print(f"   store: {settings.store_address}")

def cmd_submit(args):
    coord = open_coordinator(load_settings(args))
    record_id = coord.submit_encrypted_record(
        args.caller,
        args.value,
        args.metadata,
        args.description,
        record_id=args.id,
    )
    record = coord.store.get_record(record_id)
    print("✅ Encrypted record created")
    print(f"   id: {record_id}")
    print(f"   handle: {record.encrypted_markers}")
    print(f"   owner: {record.owner}")

def cmd_verify(args):
    coord = open_coordinator(load_settings(args))
    result = coord.request_verification(args.id, args.caller)
    label = {
        "cached": "already verified",
        "verified": "verified now",
        "converged": "verified concurrently",
    }[result.source]
    print(f"✅ {result.record_id}: {result.value} ({label})")

def cmd_list(args):
    coord = open_coordinator(load_settings(args))
    records = coord.store.records()
    if not records:
        print("No records")
        return
    for r in records:
        status = f"✅ {r.decrypted_similarity}" if r.is_analyzed else "🔒 encrypted"
        print(f"{r.record_id}  {status}  {r.description}")

def cmd_show(args):
    coord = open_coordinator(load_settings(args))
    record = coord.store.get_record(args.id)
    print(json.dumps(record.model_dump(by_alias=True), indent=2, sort_keys=True))

def cmd_analyze(args):
    coord = open_coordinator(load_settings(args))
    analysis = analyze_record(coord.store.get_record(args.id))
    print(json.dumps(analysis.model_dump(), indent=2, sort_keys=True))

def cmd_stats(args):
    coord = open_coordinator(load_settings(args))
    print(json.dumps(summarize(coord.store.records()).model_dump(), indent=2, sort_keys=True))

def cmd_verify_ledger(args):
    settings = load_settings(args)
    ledger = HashChainedLedger(settings.ledger_path)
    bad = ledger.first_invalid()
    if bad is not None:
        print(f"❌ Ledger verify FAILED at block {bad}")
        raise SystemExit(1)
    print(f"✅ Ledger verify (hash chain, {len(ledger)} blocks)")

def main(argv: Optional[List[str]] = None) -> None:
    p = argparse.ArgumentParser(prog="ancestry-ledger")
    p.add_argument("--out", help="State directory (default: $ANCESTRY_STATE_DIR or ./state)")
    p.add_argument("-v", "--verbose", action="store_true")
    sub = p.add_subparsers(dest="cmd", required=True)

    # init-oracle
    i = sub.add_parser("init-oracle", help="Create local oracle keys")
    i.set_defaults(func=cmd_init_oracle)

    # submit
    s = sub.add_parser("submit", help="Encrypt a similarity value and create a record")
    s.add_argument("--caller", required=True, help="Identity creating the record")
    s.add_argument("--value", required=True, type=int, help="Plaintext similarity (uint32)")
    s.add_argument("--metadata", type=int, default=0, help="Public metadata (e.g. ethnicity code)")
    s.add_argument("--description", default="DNA Ancestry Analysis")
    s.add_argument("--id", help="Record id (default: generated)")
    s.set_defaults(func=cmd_submit)

    # verify
    v = sub.add_parser("verify", help="Decrypt with proof and mark the record analyzed")
    v.add_argument("--id", required=True)
    v.add_argument("--caller", required=True)
    v.set_defaults(func=cmd_verify)

    # list
    ls = sub.add_parser("list", help="List records in creation order")
    ls.set_defaults(func=cmd_list)

    # show
    sh = sub.add_parser("show", help="Show a record snapshot")
    sh.add_argument("--id", required=True)
    sh.set_defaults(func=cmd_show)

    # analyze
    a = sub.add_parser("analyze", help="Derived ancestry metrics for a record")
    a.add_argument("--id", required=True)
    a.set_defaults(func=cmd_analyze)

    # stats
    st = sub.add_parser("stats", help="Store summary")
    st.set_defaults(func=cmd_stats)

    # verify-ledger
    vl = sub.add_parser("verify-ledger", help="Verify ledger hash chain")
    vl.set_defaults(func=cmd_verify_ledger)

    args = p.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        args.func(args)
    except AncestryLedgerError as e:
        print(f"❌ {e.code}: {e}")
        raise SystemExit(1)
    except ValueError as e:
        print(f"❌ {e}")
        raise SystemExit(1)

if __name__ == "__main__":
    main()
