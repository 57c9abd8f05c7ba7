#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Unit tests for the SQLite connection pool and UserRepository."""

import os
import shutil
import tempfile
import threading
import time
import unittest
from datetime import datetime, timezone

from queue_worker.exceptions import ConstraintViolation, NotFound, StoreError
from queue_worker.storage.database import ConnectionPool
from queue_worker.storage.user_repository import User, UserRepository


class StoreTestCase(unittest.TestCase):
    """Creates a migrated database in a temporary directory for each test."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.test_dir, "users.db")
        self.pool = ConnectionPool(self.db_path, max_connections=3, timeout=5.0)
        self.pool.migrate()
        self.repository = UserRepository(self.pool)

    def tearDown(self):
        self.pool.close()
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def count_users(self):
        with self.pool.connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]


class TestUserRepository(StoreTestCase):
    """Test cases for UserRepository."""

    def test_create_assigns_id_and_timestamps(self):
        before = datetime.now(timezone.utc)
        user = self.repository.create(User(name="Ada", email="ada@example.com"))
        after = datetime.now(timezone.utc)

        self.assertEqual(user.id, 1)
        self.assertEqual(user.name, "Ada")
        self.assertEqual(user.email, "ada@example.com")
        self.assertTrue(before <= user.created_at <= after)
        self.assertEqual(user.created_at, user.updated_at)

        stored = self.repository.get_by_id(1)
        self.assertEqual(stored, user)

    def test_duplicate_email_raises_constraint_violation(self):
        self.repository.create(User(name="Ada", email="ada@example.com"))
        with self.assertRaises(ConstraintViolation):
            self.repository.create(User(name="Ada Again", email="ada@example.com"))

        self.assertEqual(self.count_users(), 1)
        self.assertEqual(self.repository.get_by_email("ada@example.com").name, "Ada")

    def test_lookups_raise_not_found(self):
        with self.assertRaises(NotFound):
            self.repository.get_by_id(99)
        with self.assertRaises(NotFound):
            self.repository.get_by_email("nobody@example.com")

    def test_get_by_email(self):
        created = self.repository.create(User(name="Grace", email="grace@example.com"))
        self.assertEqual(self.repository.get_by_email("grace@example.com").id, created.id)

    def test_update_restamps_updated_at(self):
        user = self.repository.create(User(name="Ada", email="ada@example.com"))
        time.sleep(0.01)
        user.name = "Ada Lovelace"
        updated = self.repository.update(user)

        self.assertEqual(updated.id, user.id)
        self.assertEqual(updated.name, "Ada Lovelace")
        self.assertEqual(updated.created_at, user.created_at)
        self.assertGreater(updated.updated_at, updated.created_at)

    def test_update_unknown_id_raises_not_found(self):
        with self.assertRaises(NotFound):
            self.repository.update(User(id=42, name="Ghost", email="ghost@example.com"))

    def test_update_to_taken_email_raises_constraint_violation(self):
        self.repository.create(User(name="Ada", email="ada@example.com"))
        grace = self.repository.create(User(name="Grace", email="grace@example.com"))
        grace.email = "ada@example.com"
        with self.assertRaises(ConstraintViolation):
            self.repository.update(grace)

    def test_delete(self):
        user = self.repository.create(User(name="Ada", email="ada@example.com"))
        self.repository.delete(user.id)
        with self.assertRaises(NotFound):
            self.repository.get_by_id(user.id)
        with self.assertRaises(NotFound):
            self.repository.delete(user.id)

    def test_list_returns_newest_first(self):
        for name in ("first", "second", "third"):
            self.repository.create(User(name=name, email=f"{name}@example.com"))

        users = self.repository.list(limit=10, offset=0)
        self.assertEqual([u.name for u in users], ["third", "second", "first"])

    def test_list_pagination(self):
        for i in range(5):
            self.repository.create(User(name=f"user{i}", email=f"user{i}@example.com"))

        self.assertEqual([u.name for u in self.repository.list(limit=2, offset=0)], ["user4", "user3"])
        self.assertEqual([u.name for u in self.repository.list(limit=2, offset=4)], ["user0"])
        self.assertEqual(self.repository.list(limit=2, offset=10), [])
        with self.assertRaises(ValueError):
            self.repository.list(limit=-1)

    def test_trigger_maintains_updated_at(self):
        user = self.repository.create(User(name="Ada", email="ada@example.com"))
        time.sleep(0.01)
        with self.pool.connection() as conn:
            conn.execute("UPDATE users SET name = 'Changed' WHERE id = ?", (user.id,))

        stored = self.repository.get_by_id(user.id)
        self.assertEqual(stored.name, "Changed")
        self.assertGreater(stored.updated_at, user.updated_at)

    def test_concurrent_creates(self):
        errors = []

        def create(i):
            try:
                self.repository.create(User(name=f"user{i}", email=f"user{i}@example.com"))
            except Exception as e:  # collected for the assertion below
                errors.append(e)

        threads = [threading.Thread(target=create, args=(i,)) for i in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(self.count_users(), 10)


class TestConnectionPool(StoreTestCase):
    """Test cases for ConnectionPool."""

    def test_migrate_is_idempotent(self):
        self.assertEqual(self.pool.migrate(), ["001_create_users_table.sql"])

    def test_health_check(self):
        self.pool.health_check()

    def test_rollback_on_error(self):
        with self.assertRaises(RuntimeError):
            with self.pool.connection() as conn:
                conn.execute("INSERT INTO users (name, email) VALUES ('Ada', 'ada@example.com')")
                raise RuntimeError("boom")
        self.assertEqual(self.count_users(), 0)

    def test_acquire_times_out_when_exhausted(self):
        pool = ConnectionPool(os.path.join(self.test_dir, "small.db"), max_connections=1, timeout=0.1)
        conn = pool.acquire()
        try:
            with self.assertRaises(StoreError):
                pool.acquire()
        finally:
            pool.release(conn)
            pool.close()

    def test_connections_are_reused(self):
        with self.pool.connection() as first:
            pass
        with self.pool.connection() as second:
            pass
        self.assertIs(first, second)

    def test_closed_pool_rejects_acquire(self):
        self.pool.close()
        self.pool.close()
        with self.assertRaises(StoreError):
            self.pool.acquire()

    def test_memory_database_uses_single_connection(self):
        pool = ConnectionPool(":memory:", max_connections=5)
        try:
            self.assertEqual(pool.max_connections, 1)
            pool.migrate()
            repository = UserRepository(pool)
            repository.create(User(name="Ada", email="ada@example.com"))
            self.assertEqual(len(repository.list()), 1)
        finally:
            pool.close()


if __name__ == '__main__':
    unittest.main()
