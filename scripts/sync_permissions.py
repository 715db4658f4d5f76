"""
Sync script to reconcile declared permission metadata into the database.

Run this script whenever the metadata file changes to:
- Create, update and delete permissions
- Rebuild the permission group tree and group memberships
- Optionally materialize preset roles for existing owners

Usage:
    python -m scripts.sync_permissions
    python -m scripts.sync_permissions ./metadata.yaml --preset app:1 --preset app:2
"""
import argparse
import asyncio

from rbac_engine.core import config
from rbac_engine.core.database.engine import AsyncSessionLocal, init_db
from rbac_engine.features.permissions.metadata import load_metadata
from rbac_engine.features.permissions.reconciler import sync_permission_metadata
from rbac_engine.features.permissions.roles import sync_preset_roles
from rbac_engine.utils import get_logger


log = get_logger(__name__)


def parse_preset(value: str) -> tuple[str, int]:
    """Parse a "roleable_type:roleable_id" pair."""
    roleable_type, sep, roleable_id = value.rpartition(":")
    if not sep or not roleable_type:
        raise argparse.ArgumentTypeError(f"expected roleable_type:roleable_id, got {value!r}")
    try:
        return roleable_type, int(roleable_id)
    except ValueError:
        raise argparse.ArgumentTypeError(f"roleable_id must be an integer, got {roleable_id!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reconcile permission metadata into the database")
    parser.add_argument(
        "path",
        nargs="?",
        default=config.PERMISSION_METADATA_PATH,
        help="metadata file (.yaml, .yml or .json)",
    )
    parser.add_argument(
        "--preset",
        action="append",
        type=parse_preset,
        default=[],
        metavar="TYPE:ID",
        help="materialize preset roles for this owner (repeatable)",
    )
    return parser


async def main(argv=None):
    """Main function to sync permission metadata."""
    args = build_parser().parse_args(argv)
    metadata = load_metadata(args.path)

    log.info("Initializing database tables...")
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            async with db.begin():
                await sync_permission_metadata(db, metadata)

                for roleable_type, roleable_id in args.preset:
                    roles = await sync_preset_roles(db, metadata, roleable_id, roleable_type)
                    log.info(f"Preset roles for {roleable_type}:{roleable_id}: {[r.name for r in roles]}")
        except Exception as e:
            log.error(f"Error syncing permission metadata: {e}", exc_info=True)
            raise

    log.info("Permission metadata sync completed successfully!")


if __name__ == "__main__":
    asyncio.run(main())
