"""Role-based access control stored in SQLite, with request guards."""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS roles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name VARCHAR(50) NOT NULL UNIQUE,
        slug VARCHAR(50) NOT NULL UNIQUE,
        description VARCHAR(255),
        is_system BOOLEAN DEFAULT 0,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS permissions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name VARCHAR(100) NOT NULL UNIQUE,
        slug VARCHAR(100) NOT NULL UNIQUE,
        description VARCHAR(255),
        module VARCHAR(50),
        category VARCHAR(50),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_permissions_module ON permissions (module)",
    """
    CREATE TABLE IF NOT EXISTS role_permissions (
        role_id INTEGER NOT NULL,
        permission_id INTEGER NOT NULL,
        PRIMARY KEY (role_id, permission_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_roles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        role_id INTEGER NOT NULL,
        created_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_user_roles_user_id ON user_roles (user_id)",
    "CREATE INDEX IF NOT EXISTS idx_user_roles_role_id ON user_roles (role_id)",
    """
    CREATE TABLE IF NOT EXISTS user_permissions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        permission_id INTEGER NOT NULL,
        created_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_user_permissions_user_id ON user_permissions (user_id)",
    "CREATE INDEX IF NOT EXISTS idx_user_permissions_permission_id "
    "ON user_permissions (permission_id)",
)

_ROLE_COLUMNS = (
    "roles.id, roles.name, roles.slug, roles.description, roles.is_system, "
    "roles.created_at, roles.updated_at"
)
_PERMISSION_COLUMNS = (
    "permissions.id, permissions.name, permissions.slug, permissions.description, "
    "permissions.module, permissions.category, permissions.created_at, permissions.updated_at"
)


def _now() -> str:
    return datetime.now().astimezone().isoformat()


@dataclass
class Permission:
    """Something a user may be allowed to do."""

    name: str
    slug: str
    description: str = ""
    module: str = ""
    category: str = ""
    id: int = 0
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Role:
    """A named bundle of permissions."""

    name: str
    slug: str
    description: str = ""
    is_system: bool = False
    id: int = 0
    created_at: str = ""
    updated_at: str = ""
    permissions: list[Permission] = field(default_factory=list)


def _role(row: tuple) -> Role:
    ident, name, slug, description, is_system, created, updated = row
    return Role(
        id=ident,
        name=name,
        slug=slug,
        description=description or "",
        is_system=bool(is_system),
        created_at=created or "",
        updated_at=updated or "",
    )


def _permission(row: tuple) -> Permission:
    ident, name, slug, description, module, category, created, updated = row
    return Permission(
        id=ident,
        name=name,
        slug=slug,
        description=description or "",
        module=module or "",
        category=category or "",
        created_at=created or "",
        updated_at=updated or "",
    )


class AccessError(Exception):
    """An access check could not be completed; carries an HTTP-style status."""

    status = 500
    code = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        """The error as a response body."""
        return {"error": self.code, "message": self.message}


class Unauthorized(AccessError):
    """No authenticated user was given."""

    status = 401
    code = "unauthorized"


class Forbidden(AccessError):
    """The user lacks the required role or permissions."""

    status = 403
    code = "forbidden"


class RBACManager:
    """Manages roles, permissions and their assignment to users.

    ``db`` is an open sqlite3 connection or a database path.
    """

    def __init__(self, db: sqlite3.Connection | str = ":memory:") -> None:
        if isinstance(db, sqlite3.Connection):
            self._conn = db
        else:
            self._conn = sqlite3.connect(db, check_same_thread=False)
        self._lock = threading.RLock()
        with self._lock, self._conn:
            for statement in _SCHEMA:
                self._conn.execute(statement)

    def _write(self, sql: str, params: tuple) -> sqlite3.Cursor:
        with self._lock, self._conn:
            return self._conn.execute(sql, params)

    def _count(self, sql: str, params: tuple) -> int:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()[0]

    def assign_role(self, user_id: int, role_id: int) -> None:
        self._write(
            "INSERT INTO user_roles (user_id, role_id, created_at) VALUES (?, ?, ?)",
            (user_id, role_id, _now()),
        )

    def remove_role(self, user_id: int, role_id: int) -> None:
        self._write(
            "DELETE FROM user_roles WHERE user_id = ? AND role_id = ?", (user_id, role_id)
        )

    def assign_permission(self, user_id: int, permission_id: int) -> None:
        self._write(
            "INSERT INTO user_permissions (user_id, permission_id, created_at) VALUES (?, ?, ?)",
            (user_id, permission_id, _now()),
        )

    def remove_permission(self, user_id: int, permission_id: int) -> None:
        self._write(
            "DELETE FROM user_permissions WHERE user_id = ? AND permission_id = ?",
            (user_id, permission_id),
        )

    def get_user_roles(self, user_id: int) -> list[Role]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_ROLE_COLUMNS} FROM roles "
                "JOIN user_roles ON user_roles.role_id = roles.id "
                "WHERE user_roles.user_id = ? ORDER BY roles.id",
                (user_id,),
            ).fetchall()
        return [_role(row) for row in rows]

    def get_user_permissions(self, user_id: int) -> list[Permission]:
        """Permissions from the user's roles and direct grants, without duplicates."""
        with self._lock:
            from_roles = self._conn.execute(
                f"SELECT DISTINCT {_PERMISSION_COLUMNS} FROM permissions "
                "JOIN role_permissions ON role_permissions.permission_id = permissions.id "
                "JOIN user_roles ON user_roles.role_id = role_permissions.role_id "
                "WHERE user_roles.user_id = ?",
                (user_id,),
            ).fetchall()
            direct = self._conn.execute(
                f"SELECT {_PERMISSION_COLUMNS} FROM permissions "
                "JOIN user_permissions ON user_permissions.permission_id = permissions.id "
                "WHERE user_permissions.user_id = ?",
                (user_id,),
            ).fetchall()
        merged = {row[0]: _permission(row) for row in [*from_roles, *direct]}
        return [merged[ident] for ident in sorted(merged)]

    def has_role(self, user_id: int, role_slug: str) -> bool:
        return (
            self._count(
                "SELECT COUNT(*) FROM user_roles "
                "JOIN roles ON roles.id = user_roles.role_id "
                "WHERE user_roles.user_id = ? AND roles.slug = ?",
                (user_id, role_slug),
            )
            > 0
        )

    def has_permission(self, user_id: int, permission_slug: str) -> bool:
        """Whether the user holds the permission through a role or directly."""
        via_roles = self._count(
            "SELECT COUNT(*) FROM permissions "
            "JOIN role_permissions ON role_permissions.permission_id = permissions.id "
            "JOIN user_roles ON user_roles.role_id = role_permissions.role_id "
            "WHERE user_roles.user_id = ? AND permissions.slug = ?",
            (user_id, permission_slug),
        )
        if via_roles > 0:
            return True
        direct = self._count(
            "SELECT COUNT(*) FROM user_permissions "
            "JOIN permissions ON permissions.id = user_permissions.permission_id "
            "WHERE user_permissions.user_id = ? AND permissions.slug = ?",
            (user_id, permission_slug),
        )
        return direct > 0

    def has_any_permission(self, user_id: int, permission_slugs: Iterable[str]) -> bool:
        return any(self.has_permission(user_id, slug) for slug in permission_slugs)

    def has_all_permissions(self, user_id: int, permission_slugs: Iterable[str]) -> bool:
        return all(self.has_permission(user_id, slug) for slug in permission_slugs)

    def create_role(self, role: Role) -> Role:
        """Store a new role with its permissions; fills in id and timestamps."""
        now = _now()
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "INSERT INTO roles (name, slug, description, is_system, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (role.name, role.slug, role.description, int(role.is_system), now, now),
            )
            role.id = cursor.lastrowid
            role.created_at = role.updated_at = now
            for permission in role.permissions:
                if not permission.id:
                    self._insert_permission(permission, now)
                self._conn.execute(
                    "INSERT OR IGNORE INTO role_permissions (role_id, permission_id) VALUES (?, ?)",
                    (role.id, permission.id),
                )
        return role

    def _insert_permission(self, permission: Permission, now: str) -> None:
        cursor = self._conn.execute(
            "INSERT INTO permissions "
            "(name, slug, description, module, category, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                permission.name,
                permission.slug,
                permission.description,
                permission.module,
                permission.category,
                now,
                now,
            ),
        )
        permission.id = cursor.lastrowid
        permission.created_at = permission.updated_at = now

    def create_permission(self, permission: Permission) -> Permission:
        """Store a new permission; fills in id and timestamps."""
        with self._lock, self._conn:
            self._insert_permission(permission, _now())
        return permission

    def attach_permission_to_role(self, role_id: int, permission_id: int) -> None:
        self._write(
            "INSERT INTO role_permissions (role_id, permission_id) VALUES (?, ?)",
            (role_id, permission_id),
        )

    def detach_permission_from_role(self, role_id: int, permission_id: int) -> None:
        self._write(
            "DELETE FROM role_permissions WHERE role_id = ? AND permission_id = ?",
            (role_id, permission_id),
        )

    def sync_role_permissions(self, role_id: int, permission_ids: Iterable[int]) -> None:
        """Replace the role's permissions with exactly these, atomically."""
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM role_permissions WHERE role_id = ?", (role_id,))
            for permission_id in permission_ids:
                self._conn.execute(
                    "INSERT INTO role_permissions (role_id, permission_id) VALUES (?, ?)",
                    (role_id, permission_id),
                )

    def get_permissions_by_module(self, module: str) -> list[Permission]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_PERMISSION_COLUMNS} FROM permissions "
                "WHERE module = ? ORDER BY id",
                (module,),
            ).fetchall()
        return [_permission(row) for row in rows]

    def get_role_by_slug(self, slug: str) -> Role | None:
        """The role with its permissions, or None if there is none."""
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_ROLE_COLUMNS} FROM roles WHERE slug = ?", (slug,)
            ).fetchone()
            if row is None:
                return None
            role = _role(row)
            permission_rows = self._conn.execute(
                f"SELECT {_PERMISSION_COLUMNS} FROM permissions "
                "JOIN role_permissions ON role_permissions.permission_id = permissions.id "
                "WHERE role_permissions.role_id = ? ORDER BY permissions.id",
                (role.id,),
            ).fetchall()
        role.permissions = [_permission(r) for r in permission_rows]
        return role

    def get_permission_by_slug(self, slug: str) -> Permission | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_PERMISSION_COLUMNS} FROM permissions WHERE slug = ?", (slug,)
            ).fetchone()
        return _permission(row) if row is not None else None

    def seed_default_roles(self) -> list[Role]:
        """Create the system roles that are missing; returns those created."""
        defaults = [
            Role(name="Super Admin", slug="super-admin", description="Full system access", is_system=True),
            Role(name="Admin", slug="admin", description="Administrative access", is_system=True),
            Role(name="User", slug="user", description="Regular user access", is_system=True),
        ]
        created = []
        for role in defaults:
            if self.get_role_by_slug(role.slug) is None:
                created.append(self.create_role(role))
        return created


def _guard(
    check: Callable[[int], bool], failure: str, denial: str
) -> Callable[[Any], int]:
    def guard(user_id: Any) -> int:
        if not isinstance(user_id, int) or isinstance(user_id, bool) or user_id < 0:
            raise Unauthorized("user not authenticated")
        try:
            allowed = check(user_id)
        except sqlite3.Error as exc:
            raise AccessError(failure) from exc
        if not allowed:
            raise Forbidden(denial)
        return user_id

    return guard


def require_permission(manager: RBACManager, permission: str) -> Callable[[Any], int]:
    """A guard that passes a user id through only if it holds the permission."""
    return _guard(
        lambda user_id: manager.has_permission(user_id, permission),
        "failed to check permission",
        "insufficient permissions",
    )


def require_role(manager: RBACManager, role: str) -> Callable[[Any], int]:
    """A guard that passes a user id through only if it has the role."""
    return _guard(
        lambda user_id: manager.has_role(user_id, role),
        "failed to check role",
        "insufficient role",
    )


def require_any_permission(manager: RBACManager, *permissions: str) -> Callable[[Any], int]:
    """A guard that requires at least one of the permissions."""
    return _guard(
        lambda user_id: manager.has_any_permission(user_id, permissions),
        "failed to check permissions",
        "insufficient permissions",
    )


def require_all_permissions(manager: RBACManager, *permissions: str) -> Callable[[Any], int]:
    """A guard that requires every one of the permissions."""
    return _guard(
        lambda user_id: manager.has_all_permissions(user_id, permissions),
        "failed to check permissions",
        "insufficient permissions",
    )