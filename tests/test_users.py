"""
Tests for the user whitelist and role gate.
"""

import os
import shutil
import tempfile

import pytest

from power_bill_tracker.core.access import Actor, require_role
from power_bill_tracker.core.errors import StoreUnavailable, Unauthorized, ValidationError
from power_bill_tracker.storage.db import get_connection
from power_bill_tracker.storage.users import UserRepository, initialize_user_schema


class TestUserRepository:
    """Test whitelist management."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_user_schema(self.db_path)
        self.users = UserRepository(self.db_path)

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_add_and_list_users(self):
        """Added users are listed by email with their roles."""
        self.users.add_user("zoe@example.com")
        self.users.add_user("Admin@Example.com ", "admin")

        accounts = self.users.list_users()

        assert [(a.email, a.role) for a in accounts] == [
            ("admin@example.com", "admin"),
            ("zoe@example.com", "user"),
        ]

    def test_add_duplicate_email_rejected(self):
        """An email can only be whitelisted once."""
        self.users.add_user("a@example.com")

        with pytest.raises(ValidationError, match="already exists"):
            self.users.add_user("A@example.com")

    def test_add_rejects_unknown_role(self):
        """Only user and admin are valid roles."""
        with pytest.raises(ValidationError, match="role must be one of"):
            self.users.add_user("a@example.com", "owner")

    def test_add_requires_email(self):
        with pytest.raises(ValidationError, match="email is required"):
            self.users.add_user("  ")

    def test_update_role(self):
        """Role changes are persisted."""
        account = self.users.add_user("a@example.com")

        self.users.update_user_role(account.id, "admin")

        assert self.users.get_user_profile(account.id).role == "admin"

    def test_update_role_of_unknown_user(self):
        with pytest.raises(ValidationError, match="Unknown user"):
            self.users.update_user_role("missing", "admin")

    def test_missing_role_defaults_to_user(self):
        """Accounts stored without a role read as plain users."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("INSERT INTO users (id, email, role) VALUES ('u1', 'old@example.com', NULL)")
            conn.commit()
        finally:
            conn.close()

        assert self.users.get_user_profile("u1").role == "user"

    def test_role_of(self):
        """role_of looks the actor up by email."""
        self.users.add_user("admin@example.com", "admin")

        assert self.users.role_of(Actor(id="x", email="admin@example.com")) == "admin"
        assert self.users.role_of(Actor(id="y", email="stranger@example.com")) is None
        assert self.users.role_of(None) is None

    def test_uninitialized_store_raises_store_unavailable(self):
        users = UserRepository(os.path.join(self.temp_dir, "empty.db"))

        with pytest.raises(StoreUnavailable):
            users.list_users()


class StaticRoles:
    def __init__(self, roles):
        self.roles = roles

    def role_of(self, actor):
        return self.roles.get(actor.email) if actor else None


class TestRequireRole:
    """Test the admin gate."""

    def test_admin_passes(self):
        roles = StaticRoles({"admin@example.com": "admin"})

        assert require_role(roles, Actor("1", "admin@example.com"), "admin") == "admin"

    def test_plain_user_rejected(self):
        roles = StaticRoles({"user@example.com": "user"})

        with pytest.raises(Unauthorized, match="needs the 'admin' role"):
            require_role(roles, Actor("2", "user@example.com"), "admin")

    def test_not_whitelisted_rejected(self):
        with pytest.raises(Unauthorized, match="not whitelisted"):
            require_role(StaticRoles({}), Actor("3", "who@example.com"), "admin")

    def test_anonymous_rejected(self):
        with pytest.raises(Unauthorized, match="Not signed in"):
            require_role(StaticRoles({}), None, "admin")
