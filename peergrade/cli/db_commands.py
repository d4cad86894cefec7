"""
Database CLI Commands
"""
import asyncio

from peergrade import database


class DbCommand:
    """Database CLI command handler."""

    def __init__(self, dry_run: bool = False, as_json: bool = False):
        self.dry_run = dry_run
        self.as_json = as_json

    def execute(self, args) -> int:
        """Execute database command."""
        if args.command == "init-db":
            return self._init_db()
        print("Error: Unknown database action")
        return 1

    def _init_db(self) -> int:
        """Create all tables."""
        print("=== Database Initialization ===")

        if self.dry_run:
            print(f"[DRY RUN] Would create tables on {database.engine.url.get_backend_name()}")
            return 0

        try:
            asyncio.run(self._async_init_db())
            print("✓ Tables created")
            return 0
        except Exception as e:
            print(f"Error: {e}")
            return 1

    async def _async_init_db(self) -> None:
        try:
            await database.init_db()
        finally:
            await database.engine.dispose()
