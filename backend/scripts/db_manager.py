"""Database management utility script.

Usage:
    python scripts/db_manager.py init      # Create missing tables and columns
    python scripts/db_manager.py inspect   # Inspect database schema
    python scripts/db_manager.py reset     # Reset database (drops all tables)
    python scripts/db_manager.py stats     # Row counts per table
"""
import sys
import argparse
import logging
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import inspect
from supportchat.config import get_settings
from supportchat.db_init import DatabaseInitializer


def init_database(initializer: DatabaseInitializer):
    """Initialize the database."""
    print(f"Initializing database: {get_settings().DATABASE_URL}")
    print(f"\nTables to process:")
    for i, name in enumerate(initializer.table_names, 1):
        print(f"  {i}. {name}")

    print("\n" + "=" * 60)
    initializer.initialize()
    print("=" * 60)
    print("\n✓ Database initialization completed!")


def inspect_database(initializer: DatabaseInitializer):
    """Display tables, columns, foreign keys and indexes."""
    inspector = inspect(initializer.engine)
    tables = sorted(inspector.get_table_names())

    print(f"Database: {get_settings().DATABASE_URL}")
    print("=" * 80)

    if not tables:
        print("No tables found in database.")
        print("Run 'python scripts/db_manager.py init' to create them.")
        return

    counts = initializer.table_counts()
    print(f"\nTables found: {len(tables)}")

    for table_name in tables:
        print(f"\n📊 Table: {table_name}")
        print("-" * 80)
        print(f"{'Column':<25} {'Type':<20} {'Nullable':<10} {'Default'}")
        print("-" * 80)
        for col in inspector.get_columns(table_name):
            print(f"{col['name']:<25} {str(col['type']):<20} {str(col['nullable']):<10} {col.get('default')}")

        if table_name in counts:
            print(f"\nRows: {counts[table_name]}")

        fks = inspector.get_foreign_keys(table_name)
        if fks:
            print("\nForeign Keys:")
            for fk in fks:
                print(f"  → {', '.join(fk['constrained_columns'])} → "
                      f"{fk['referred_table']}.{', '.join(fk['referred_columns'])}")

        indexes = inspector.get_indexes(table_name)
        uniques = inspector.get_unique_constraints(table_name)
        if indexes or uniques:
            print("\nIndexes:")
            for idx in indexes:
                flag = " (unique)" if idx.get("unique") else ""
                print(f"  • {idx['name']}: {', '.join(c for c in idx['column_names'] if c)}{flag}")
            for uq in uniques:
                print(f"  • {uq['name']}: {', '.join(uq['column_names'])} (unique)")

    print("\n" + "=" * 80)
    print("✓ Inspection complete")


def reset_database(initializer: DatabaseInitializer, assume_yes: bool = False):
    """Reset database by dropping all tables and recreating them."""
    if not assume_yes:
        print("⚠️  WARNING: This will delete ALL data in the database!")
        response = input("Type 'yes' to continue: ")

        if response.lower() != 'yes':
            print("Reset cancelled.")
            return

    print("\n" + "=" * 60)
    initializer.reset_database()
    print("=" * 60)
    print("\n✓ Database reset completed!")


def show_stats(initializer: DatabaseInitializer):
    counts = initializer.table_counts()
    if not counts:
        print("No tables found in database.")
        return
    for name, count in counts.items():
        print(f"{name:<30} {count}")


def main():
    """Main entry point for the database manager."""
    parser = argparse.ArgumentParser(
        description="Database management utility for the support chat backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/db_manager.py init      # Initialize database
  python scripts/db_manager.py inspect   # Inspect database schema
  python scripts/db_manager.py reset     # Reset database (with confirmation)
  python scripts/db_manager.py stats     # Row counts
        """
    )

    parser.add_argument(
        'action',
        choices=['init', 'inspect', 'reset', 'stats'],
        help='Action to perform on the database'
    )
    parser.add_argument('--yes', action='store_true', help='Skip the reset confirmation prompt')

    args = parser.parse_args()
    logging.basicConfig(level=get_settings().LOG_LEVEL.upper())
    initializer = DatabaseInitializer()

    try:
        if args.action == 'init':
            init_database(initializer)
        elif args.action == 'inspect':
            inspect_database(initializer)
        elif args.action == 'reset':
            reset_database(initializer, args.yes)
        elif args.action == 'stats':
            show_stats(initializer)
    except KeyboardInterrupt:
        print("\n\nOperation cancelled by user.")
        sys.exit(1)
    except Exception as e:
        print(f"\n✗ Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
