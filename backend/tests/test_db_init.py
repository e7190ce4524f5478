"""Tests for database initialization."""
import os
import time

from sqlalchemy import create_engine, inspect, text
from supportchat.db_init import DatabaseInitializer
from supportchat.models import MessageAttachment


class TestDatabaseInitialization:
    """Test database initialization functionality."""

    def test_initialize_creates_all_tables(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'fresh.db'}")
        initializer = DatabaseInitializer(engine)
        initializer.initialize()

        tables = set(inspect(engine).get_table_names())
        assert set(initializer.table_names) <= tables
        assert {"tenants", "users", "conversations", "conversation_participants", "messages"} <= tables

        unique = inspect(engine).get_unique_constraints("conversations")
        assert ["tenant_id", "direct_key"] in [u["column_names"] for u in unique]

    def test_initialize_is_repeatable(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'twice.db'}")
        DatabaseInitializer(engine).initialize()
        DatabaseInitializer(engine).initialize()
        assert "messages" in inspect(engine).get_table_names()

    def test_missing_columns_are_added(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'old.db'}")
        with engine.begin() as conn:
            conn.execute(text("CREATE TABLE users (id INTEGER PRIMARY KEY, tenant_id INTEGER NOT NULL, name VARCHAR(100) NOT NULL)"))
            conn.execute(text("INSERT INTO users (id, tenant_id, name) VALUES (1, 1, 'Legacy')"))

        DatabaseInitializer(engine).initialize()

        columns = {c["name"] for c in inspect(engine).get_columns("users")}
        assert {"email", "role", "avatar", "is_active", "created_at"} <= columns

        with engine.connect() as conn:
            row = conn.execute(text("SELECT role, is_active FROM users WHERE id = 1")).one()
        assert row.role == "member"
        assert row.is_active == 1

        indexes = {i["name"] for i in inspect(engine).get_indexes("users")}
        assert "ix_users_email" in indexes

    def test_reset_database_empties_tables(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'reset.db'}")
        initializer = DatabaseInitializer(engine)
        initializer.initialize()
        with engine.begin() as conn:
            conn.execute(text("INSERT INTO tenants (name, is_active) VALUES ('Acme', 1)"))
        assert initializer.table_counts()["tenants"] == 1

        initializer.reset_database()
        assert initializer.table_counts()["tenants"] == 0


class TestCleanupFiles:

    def test_orphaned_uploads_are_removed(self, tmp_path, db, client, directory):
        from scripts.cleanup_files import cleanup_files
        from datetime import timedelta

        conv = client.post(
            "/api/conversations/direct",
            headers=directory.headers["bob"],
            json={"participant_id": directory.carol}
        ).json()
        kept = tmp_path / "kept.pdf"
        orphan = tmp_path / "orphan.pdf"
        fresh = tmp_path / "fresh.pdf"
        for path in (kept, orphan, fresh):
            path.write_bytes(b"data")
        old = time.time() - 3600
        os.utime(kept, (old, old))
        os.utime(orphan, (old, old))

        client.post(
            f"/api/conversations/{conv['id']}/messages",
            headers=directory.headers["bob"],
            json={
                "message_type": "file",
                "attachments": [{
                    "filename": "kept.pdf",
                    "original_name": "kept.pdf",
                    "mime_type": "application/pdf",
                    "size": 4,
                    "path": str(kept),
                }]
            }
        )
        assert db.query(MessageAttachment).count() == 1

        assert cleanup_files(db, tmp_path, timedelta(minutes=10), dry_run=True) == 0
        assert orphan.exists()

        assert cleanup_files(db, tmp_path, timedelta(minutes=10)) == 1
        assert kept.exists()
        assert fresh.exists()
        assert not orphan.exists()
