"""SQL schema migrations for the roster engine."""

from .runner import VERSIONS_DIR, Migration, MigrationRunner, MigrationStatus

__all__ = ["Migration", "MigrationRunner", "MigrationStatus", "VERSIONS_DIR"]
