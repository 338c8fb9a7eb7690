"""
User whitelist and role storage.

Users are whitelisted by email; the role decides access to admin-only
operations such as bulk import and user management.
"""

import logging
import sqlite3
import uuid
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import ROLE_USER, VALID_ROLES, UserAccount
from power_bill_tracker.core.errors import StoreUnavailable, ValidationError

logger = logging.getLogger(__name__)


def initialize_user_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the users table if it doesn't exist.

    Args:
        db_path: Path to SQLite database file
    """
    try:
        conn = get_connection(db_path)
    except sqlite3.Error as e:
        raise StoreUnavailable(f"Cannot open user store {db_path}: {e}") from e
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                role TEXT
            )
        """)
        conn.commit()
    except sqlite3.Error as e:
        raise StoreUnavailable(f"Cannot initialize user store {db_path}: {e}") from e
    finally:
        conn.close()


class UserRepository:
    """Repository for whitelisted user accounts.

    Also serves as the role provider for access checks: `role_of` looks the
    actor up by email.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def _execute(self, query: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            conn = get_connection(self.db_path)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot open user store {self.db_path}: {e}") from e
        try:
            rows = conn.execute(query, params).fetchall()
            conn.commit()
            return rows
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            raise StoreUnavailable(f"User store failure: {e}") from e
        finally:
            conn.close()

    def add_user(self, email: str, role: str = ROLE_USER) -> UserAccount:
        """Whitelist a new user.

        Raises:
            ValidationError: If the email is empty, already whitelisted,
                or the role is unknown
        """
        email = (email or "").strip().lower()
        if not email:
            raise ValidationError("email is required")
        _check_role(role)
        user = UserAccount(id=uuid.uuid4().hex, email=email, role=role)
        try:
            self._execute(
                "INSERT INTO users (id, email, role) VALUES (?, ?, ?)",
                (user.id, user.email, user.role),
            )
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"User already exists: {email}") from e
        logger.info("Whitelisted %s as %s", user.email, user.role)
        return user

    def list_users(self) -> List[UserAccount]:
        """Return all whitelisted users ordered by email."""
        rows = self._execute("SELECT id, email, role FROM users ORDER BY email")
        return [_row_to_user(row) for row in rows]

    def get_user_profile(self, user_id: str) -> Optional[UserAccount]:
        rows = self._execute("SELECT id, email, role FROM users WHERE id = ?", (user_id,))
        return _row_to_user(rows[0]) if rows else None

    def get_user_by_email(self, email: str) -> Optional[UserAccount]:
        rows = self._execute(
            "SELECT id, email, role FROM users WHERE email = ?",
            ((email or "").strip().lower(),),
        )
        return _row_to_user(rows[0]) if rows else None

    def update_user_role(self, user_id: str, role: str) -> None:
        """Change a user's role.

        Raises:
            ValidationError: If the role is unknown or the user doesn't exist
        """
        _check_role(role)
        if self.get_user_profile(user_id) is None:
            raise ValidationError(f"Unknown user: {user_id}")
        self._execute("UPDATE users SET role = ? WHERE id = ?", (role, user_id))
        logger.info("Role of %s set to %s", user_id, role)

    def role_of(self, actor) -> Optional[str]:
        """Role of a whitelisted actor, or None when not whitelisted."""
        if actor is None:
            return None
        user = self.get_user_by_email(actor.email)
        return user.role if user else None


def _check_role(role: str) -> None:
    if role not in VALID_ROLES:
        raise ValidationError(f"role must be one of: {list(VALID_ROLES)}")


def _row_to_user(row: sqlite3.Row) -> UserAccount:
    # Accounts created without a role are plain users.
    return UserAccount(id=row["id"], email=row["email"], role=row["role"] or ROLE_USER)
