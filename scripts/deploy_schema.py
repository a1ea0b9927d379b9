#!/usr/bin/env python
# ============================================================================
# SCHEMA DEPLOYMENT SCRIPT
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# PURPOSE: Deploy the coordination tables and inspect slot pools
# USAGE:
#   python scripts/deploy_schema.py --dry-run              # Preview SQL
#   python scripts/deploy_schema.py                        # Execute deployment
#   python scripts/deploy_schema.py --status               # Pool occupancy
#   python scripts/deploy_schema.py --reset-pool           # Empty a pool
#   python scripts/deploy_schema.py --prune-releases 24    # Drop old release markers
# ============================================================================

import sys
import os
import argparse
import asyncio
from datetime import timedelta

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import ClaimDefaults, CoordinationDefaults
from core.errors import CoordinationUnavailable
from core.logging import configure_logging
from infrastructure import CoordinationConnection, deploy_schema, render_ddl
from services import SlotPoolAdmin


def build_parser() -> argparse.ArgumentParser:
    claims = ClaimDefaults.from_env()
    parser = argparse.ArgumentParser(
        description="Deploy slot coordination schema to PostgreSQL",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/deploy_schema.py --dry-run     # Preview DDL without executing
  python scripts/deploy_schema.py               # Deploy schema
  python scripts/deploy_schema.py --status      # Show pool occupancy
  python scripts/deploy_schema.py --reset-pool --base-path /unique-id-generator

Environment Variables:
  DATABASE_URL          Full PostgreSQL connection string
  POSTGRES_HOST         Database host (default: localhost)
  POSTGRES_DB           Database name (default: postgres)
  POSTGRES_USER         Database user (default: postgres)
  POSTGRES_PASSWORD     Database password
  POSTGRES_PORT         Database port (default: 5432)
  POSTGRES_SSLMODE      SSL mode (default: require)
  COORDINATION_SCHEMA   Target schema (default: slotcoord)
        """
    )
    parser.add_argument("--dry-run", action="store_true", help="Print DDL without executing")
    parser.add_argument("--status", action="store_true", help="Show occupancy of a slot pool")
    parser.add_argument(
        "--reset-pool",
        action="store_true",
        help="Empty queue, zero counter and drop claim records of a pool",
    )
    parser.add_argument(
        "--prune-releases",
        type=float,
        metavar="HOURS",
        help="Drop release markers of a pool older than HOURS",
    )
    parser.add_argument("--base-path", default=claims.base_path, help="Pool namespace")
    parser.add_argument("--pool-size", type=int, default=claims.pool_size, help="Slots in the pool")
    parser.add_argument(
        "--connection",
        type=str,
        help="PostgreSQL connection string (overrides environment)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    return parser


async def run(args) -> int:
    config = CoordinationDefaults.from_env()

    if args.dry_run:
        print(f"\nMode: DRY RUN (schema {config.schema})\n")
        for statement in render_ddl(config.schema):
            print(f"{statement};\n")
        return 0

    connection = CoordinationConnection(config=config)
    if args.connection:
        connection.configure(args.connection)
    else:
        connection.configure_from_env()

    try:
        session = await connection.get()
    except CoordinationUnavailable as e:
        print(f"❌ {e}")
        return 1

    try:
        if args.status:
            status = await SlotPoolAdmin(session).status(args.base_path, args.pool_size)
            print("\n[POOL STATUS]\n")
            for key, value in status.model_dump().items():
                print(f"  {key}: {value}")
            return 0

        if args.reset_pool:
            await SlotPoolAdmin(session).prepare_empty_pool(args.base_path)
            print(f"✅ Pool {args.base_path} reset")
            return 0

        if args.prune_releases is not None:
            pruned = await SlotPoolAdmin(session).prune_releases(
                args.base_path, timedelta(hours=args.prune_releases)
            )
            print(f"✅ Pruned {pruned} release markers from {args.base_path}")
            return 0

        count = await deploy_schema(session.pool, config.schema)
        print(f"✅ Deployed {count} statements to schema {config.schema}")
        return 0
    finally:
        await connection.shutdown()


def main():
    args = build_parser().parse_args()
    configure_logging(level="DEBUG" if args.verbose else "INFO")

    print("=" * 70)
    print("SLOT COORDINATOR - Schema Deployment")
    print("=" * 70)

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
