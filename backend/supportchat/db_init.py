"""Database initialization driven by the SQLAlchemy models.

Creates missing tables and indexes, and brings older databases forward by
adding columns the models gained since the table was created.
"""
import logging
from typing import List, Optional
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from supportchat.database import Base, engine as default_engine
import supportchat.models  # noqa: F401  registers every table on Base.metadata

logger = logging.getLogger(__name__)


class DatabaseInitializer:
    """Create or upgrade the schema described by ``Base.metadata``."""

    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine or default_engine
        self.metadata = Base.metadata

    @property
    def table_names(self) -> List[str]:
        return [table.name for table in self.metadata.sorted_tables]

    def _column_ddl(self, column) -> Optional[str]:
        """DDL for ``ALTER TABLE ADD COLUMN``, None when the column cannot be added in place."""
        col_type = column.type.compile(dialect=self.engine.dialect)
        ddl = f"{column.name} {col_type}"

        default = column.default.arg if column.default is not None and column.default.is_scalar else None
        if default is not None:
            if isinstance(default, bool):
                default = int(default)
            if isinstance(default, str):
                default = "'" + default.replace("'", "''") + "'"
            ddl += f" DEFAULT {default}"
            if not column.nullable:
                ddl += " NOT NULL"
        elif not column.nullable:
            return None
        return ddl

    def _add_missing_columns(self, conn, table) -> List[str]:
        """Add model columns absent from an existing table. Returns their names."""
        existing = {col["name"].lower() for col in inspect(conn).get_columns(table.name)}
        added = []

        for column in table.columns:
            if column.name.lower() in existing:
                continue

            ddl = self._column_ddl(column)
            if ddl is None:
                logger.warning(
                    f"Cannot add NOT NULL column '{column.name}' without default to table '{table.name}'"
                )
                continue

            logger.info(f"Adding column '{column.name}' to table '{table.name}'")
            conn.execute(text(f"ALTER TABLE {table.name} ADD COLUMN {ddl}"))
            added.append(column.name)

        return added

    def _create_missing_indexes(self, conn, table) -> None:
        existing = {idx["name"] for idx in inspect(conn).get_indexes(table.name)}
        for index in table.indexes:
            if index.name not in existing:
                logger.info(f"Creating index '{index.name}' on table '{table.name}'")
                index.create(bind=conn)

    def initialize(self) -> None:
        """Create missing tables, then upgrade tables that already existed."""
        with self.engine.begin() as conn:
            present = set(inspect(conn).get_table_names())

            for table in self.metadata.sorted_tables:
                if table.name in present:
                    logger.debug(f"Table '{table.name}' already exists")
                    self._add_missing_columns(conn, table)
                    self._create_missing_indexes(conn, table)
                else:
                    logger.info(f"Creating table '{table.name}'")
                    table.create(bind=conn)

        logger.info("Database initialization complete")

    def reset_database(self) -> None:
        """Drop all tables and recreate them. Use with caution!"""
        logger.warning(f"Dropping all tables: {', '.join(self.table_names)}")
        self.metadata.drop_all(bind=self.engine)
        self.initialize()

    def table_counts(self) -> dict:
        """Row count per existing table."""
        counts = {}
        with self.engine.connect() as conn:
            present = set(inspect(conn).get_table_names())
            for name in self.table_names:
                if name in present:
                    counts[name] = conn.execute(text(f"SELECT COUNT(*) FROM {name}")).scalar()
        return counts


def init_database(engine: Optional[Engine] = None) -> None:
    """Initialize the database - convenience function for app startup."""
    initializer = DatabaseInitializer(engine)
    initializer.initialize()
