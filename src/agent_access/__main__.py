"""
Agent Access Sync - Entry Point

Command line access to the reconciliation engine.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

import yaml

from config import create_default_config, load_config

from .bootstrap import build_engine
from .core.errors import AccessSyncError
from .core.results import BulkResult, DriftState
from .data.schema import SUPABASE_SCHEMA

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent_access",
        description="Agent Access Sync - reconcile agent type assignments with directory groups",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Repair drift for one user
  python -m agent_access sync-user --org <org-id> --user <directory-user-id>

  # Repair drift for a whole organization
  python -m agent_access sync-org --org <org-id>

  # Grant or revoke an agent type for every user in an organization
  python -m agent_access grant-all --org <org-id> --agent-type <agent-type-id>
  python -m agent_access revoke-all --org <org-id> --agent-type <agent-type-id>

  # Print the SQL to create the tables
  python -m agent_access print-schema

  # Write a default access-sync.yaml
  python -m agent_access init-config
"""
    )
    parser.add_argument('--config', '-c', help='Path to access-sync.yaml')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    parser.add_argument('--actor', help='Recorded as assigned_by on changed rows')

    commands = parser.add_subparsers(dest='command', required=True)

    sync_user = commands.add_parser('sync-user', help='Detect and repair drift for one user')
    sync_user.add_argument('--org', required=True, help='Organization id')
    sync_user.add_argument('--user', required=True, help='Directory user id')

    sync_org = commands.add_parser('sync-org', help='Detect and repair drift for an organization')
    sync_org.add_argument('--org', required=True, help='Organization id')

    for name, help_text in (
        ('grant-all', 'Grant an agent type to every active user of an organization'),
        ('revoke-all', 'Revoke an agent type from every holder in an organization'),
    ):
        bulk = commands.add_parser(name, help=help_text)
        bulk.add_argument('--org', required=True, help='Organization id')
        bulk.add_argument('--agent-type', required=True, help='Agent type id')

    commands.add_parser('print-schema', help='Print the Supabase SQL schema')

    init_config = commands.add_parser('init-config', help='Write a default access-sync.yaml')
    init_config.add_argument('--output', '-o', help='Output path (default: ./access-sync.yaml)')

    return parser


def print_bulk_result(result: BulkResult) -> None:
    print(result.summary())
    for user_id, reason in sorted(result.failures.items()):
        print(f"  ✗ {user_id}: {reason}")


async def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.command == 'print-schema':
        print(SUPABASE_SCHEMA)
        return 0
    if args.command == 'init-config':
        path = create_default_config(args.output)
        print(f"✓ Wrote {path}")
        return 0

    try:
        config = load_config(args.config)
        engine = build_engine(config)
    except (FileNotFoundError, KeyError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Configuration error: {e}")
        print(f"\n❌ Configuration error: {e}")
        return 2
    actor = args.actor or config.reconciliation.system_actor

    try:
        if args.command == 'sync-user':
            report = await engine.sync_user(args.user, args.org, actor)
            for finding in report.findings:
                mark = "✓" if finding.repaired or finding.state == DriftState.CONVERGED else "✗"
                print(f"  {mark} {finding.group_id}: {finding.state.value}"
                      f"{' (repaired)' if finding.repaired else ''}")
            for error in report.errors:
                print(f"  ✗ {error}")
            print("Converged" if report.success else "Drift remains")
            return 0 if report.success else 1

        if args.command == 'sync-org':
            result = await engine.sync_organization(args.org, actor)
        elif args.command == 'grant-all':
            result = await engine.grant_to_all(args.org, args.agent_type, actor)
        else:
            result = await engine.revoke_from_all(args.org, args.agent_type, actor)

        print_bulk_result(result)
        return 0 if result.success else 1

    except AccessSyncError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"\n❌ Error: {e}")
        return 2
    finally:
        await engine.close()


def run():
    """Entry point for console script"""
    sys.exit(asyncio.run(main()))


if __name__ == '__main__':
    run()
