#!/usr/bin/env python3
"""
Setup script for the agent access tables in Supabase.

Run once before the engine is started; the engine never creates tables.

Usage:
    python scripts/setup_supabase_tables.py --print-schema  # Print SQL to run manually
    python scripts/setup_supabase_tables.py --test          # Check the tables are reachable
"""

import argparse
import os
import sys

from agent_access.data.schema import SUPABASE_SCHEMA, TABLES


def print_schema():
    """Print the SQL schema for manual execution."""
    print("=" * 70)
    print("Agent Access Sync - Supabase Schema")
    print("=" * 70)
    print()
    print("Run this SQL in your Supabase SQL Editor:")
    print()
    print("-" * 70)
    print(SUPABASE_SCHEMA)
    print("-" * 70)
    print()
    print("Then point access-sync.yaml at the project:")
    print()
    print("  storage:")
    print("    type: supabase")
    print("    url: \"${SUPABASE_URL}\"")
    print("    key: \"${SUPABASE_KEY}\"")
    print()


def test_connection() -> bool:
    """Test connection to Supabase and the presence of every table."""
    url = os.environ.get("SUPABASE_URL")
    key = os.environ.get("SUPABASE_KEY")

    if not url or not key:
        print("❌ SUPABASE_URL and SUPABASE_KEY not set")
        return False

    from supabase import create_client

    try:
        client = create_client(url, key)
    except Exception as e:
        print(f"❌ Connection failed: {e}")
        return False
    print("✓ Connected to Supabase")

    ok = True
    for table in TABLES:
        try:
            client.table(table).select("id").limit(1).execute()
            print(f"✓ {table} table exists")
        except Exception as e:
            ok = False
            if "does not exist" in str(e):
                print(f"❌ {table} table does not exist - run the schema first")
            else:
                print(f"❌ {table}: {e}")
    return ok


def main():
    parser = argparse.ArgumentParser(
        description="Setup Supabase for Agent Access Sync"
    )
    parser.add_argument(
        "--print-schema", "-p",
        action="store_true",
        help="Print the SQL schema for manual execution"
    )
    parser.add_argument(
        "--test", "-t",
        action="store_true",
        help="Test connection to Supabase"
    )

    args = parser.parse_args()

    if args.test:
        sys.exit(0 if test_connection() else 1)
    # Default: print schema
    print_schema()


if __name__ == "__main__":
    main()
