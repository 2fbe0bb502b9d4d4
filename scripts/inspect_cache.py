#!/usr/bin/env python3
"""Inspect the local cache store of this device.

Usage:
    # Keys held by the configured store (KV_BACKEND, STATE_DIR, REDIS_URL):
    python scripts/inspect_cache.py

    # Pending migrations of one site:
    python scripts/inspect_cache.py --site 64f1c2a9e3b4d5f6a7b8c9d0

    # Only keys starting with a prefix, values included:
    python scripts/inspect_cache.py --prefix vini_materials --values

Environment Variables:
    KV_BACKEND: file, redis or memory (default: file)
    STATE_DIR: directory of the file store
    REDIS_URL: Redis connection string when KV_BACKEND=redis
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def migration_status(kv, site_id: str) -> list:
    """Legacy entries, ledger progress and seal of every migratable collection."""
    from sitecache.service.migration import LEDGER_PREFIX, SEAL_PREFIX, content_hashes
    from sitecache.service.registry import CollectionRegistry
    from sitecache.storage.kv import scoped_key

    rows = []
    for spec in CollectionRegistry().migratable():
        legacy = kv.get(scoped_key(spec.legacy_key, site_id))
        legacy = [e for e in legacy if isinstance(e, dict)] if isinstance(legacy, list) else []
        ledger = kv.get(scoped_key(f"{LEDGER_PREFIX}_{spec.name}", site_id))
        confirmed = set(ledger) if isinstance(ledger, list) else set()
        remaining = [d for d in content_hashes(legacy) if d not in confirmed]
        rows.append(
            {
                "collection": spec.name,
                "legacy_entries": len(legacy),
                "confirmed": len(confirmed),
                "remaining": len(remaining),
                "sealed": bool(kv.get(scoped_key(f"{SEAL_PREFIX}_{spec.name}", site_id))),
            }
        )
    return rows


def main():
    parser = argparse.ArgumentParser(
        description="Inspect the local site cache",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--site", help="Report pending migrations for this site id")
    parser.add_argument("--prefix", default="", help="Only list keys with this prefix")
    parser.add_argument("--values", action="store_true", help="Print stored values")
    args = parser.parse_args()

    from sitecache.config import get_settings
    from sitecache.service.runtime import build_kv

    try:
        kv = build_kv(get_settings())
    except RuntimeError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if args.site:
        print(json.dumps(migration_status(kv, args.site), indent=2))
        return

    for key in kv.keys(args.prefix):
        if args.values:
            print(f"{key} = {json.dumps(kv.get(key))}")
        else:
            print(key)


if __name__ == "__main__":
    main()
