"""MongoDB migration scripts for schema changes."""

from accessgate.infrastructure.state_store.migrations.migration_runner import (
    CURRENT_SCHEMA_VERSION,
    run_migrations,
)

__all__ = ["run_migrations", "CURRENT_SCHEMA_VERSION"]
