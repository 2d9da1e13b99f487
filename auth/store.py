"""
auth/store.py -- SQLAlchemy Core persistence layer for users and roles.

Pattern: Repository + Data Mapper. UserStore and RoleStore are the
repositories; _row_to_user / _row_to_role are the mappers. Service code never
touches SQL directly.

Both stores share one Engine, built by create_store_engine(), because the
user_roles join table links the two.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  Every write bumps users.version. update_lockout() is a compare-and-swap on
  that column: UPDATE ... WHERE id = :id AND version = :version. Two
  concurrent failed logins that both read version N cannot both commit --
  the loser sees rowcount 0 and must reload. This keeps the lockout threshold
  from being skipped or double-counted. save() never writes the lockout
  columns on update, so a profile or role edit cannot undo a counted attempt.

Timestamps:
  created_at / updated_at are stamped here (ISO 8601 UTC strings), never by
  the auth core. locked_at and last_login_at are domain values set by the
  lockout state machine and stored as ISO strings.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine

from auth.errors import ResourceNotFoundError
from auth.models import AccountStatus, Role, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", String(255), nullable=False),
    Column("first_name", String(50)),
    Column("last_name", String(50)),
    Column("status", String(16), nullable=False, server_default=AccountStatus.PENDING.value),
    Column("enabled", Integer, nullable=False, server_default="0"),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_at", String(32)),
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("version", Integer, nullable=False, server_default="0"),
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", String(255), nullable=False, server_default=""),
    Column("active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_role_permissions = Table(
    "role_permissions",
    _metadata,
    Column("role_id", Integer, ForeignKey("roles.id"), primary_key=True),
    Column("permission", String(100), primary_key=True),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id"), primary_key=True),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str) -> Engine:
    """Create the Engine shared by UserStore and RoleStore and ensure the schema exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        engine = create_store_engine("sqlite:///keyward.db")
        users = UserStore(engine)
        saved = users.save(User(username="alice", email="a@example.com", hashed_password=...))
        users.find_by_username("alice")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
            return _row_to_user(row, _load_role_names(conn, row.id)) if row is not None else None

    def find_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            return _row_to_user(row, _load_role_names(conn, row.id)) if row is not None else None

    def exists_by_username(self, username: str) -> bool:
        with self.engine.connect() as conn:
            found = conn.execute(select(_users.c.id).where(_users.c.username == username)).first()
        return found is not None

    def exists_by_email(self, email: str) -> bool:
        with self.engine.connect() as conn:
            found = conn.execute(select(_users.c.id).where(_users.c.email == email)).first()
        return found is not None

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def list_users(self) -> list[User]:
        """Return all users ordered by username."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
            return [_row_to_user(r, _load_role_names(conn, r.id)) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, user: User) -> User:
        """Insert (id is None) or update the user and its role links; return the persisted form.

        An update leaves the lockout columns (status, failed_login_attempts,
        locked_at, last_login_at) as they are in the row. Those are written only
        by update_lockout(), so a profile or role change made from a stale copy
        cannot roll back a concurrent failed attempt or lock.

        Raises sqlalchemy.exc.IntegrityError if username or email collides with
        another row. Raises ResourceNotFoundError if a role name does not exist,
        or if an update targets a missing id.
        """
        now = _now_iso()
        values = _user_values(user)
        with self.engine.connect() as conn:
            role_ids = _resolve_role_ids(conn, user.roles)
            if user.id is None:
                result = conn.execute(_users.insert().values(created_at=now, updated_at=now, version=0, **values))
                user_id = result.inserted_primary_key[0]
            else:
                user_id = user.id
                result = conn.execute(
                    _users.update()
                    .where(_users.c.id == user_id)
                    .values(
                        updated_at=now,
                        version=_users.c.version + 1,
                        **{k: v for k, v in values.items() if k not in _LOCKOUT_COLUMNS},
                    )
                )
                if result.rowcount == 0:
                    raise ResourceNotFoundError("User", "id", user_id)
                conn.execute(_user_roles.delete().where(_user_roles.c.user_id == user_id))
            if role_ids:
                conn.execute(_user_roles.insert(), [{"user_id": user_id, "role_id": rid} for rid in role_ids])
            conn.commit()
        saved = self.find_by_id(user_id)
        if saved is None:
            raise ResourceNotFoundError("User", "id", user_id)
        return saved

    def update_lockout(self, user: User) -> bool:
        """Compare-and-swap the lockout fields of a loaded user.

        Writes failed_login_attempts, locked_at, status and last_login_at only
        if the row still carries user.version. On success user.version is
        advanced to match the row and True is returned; False means another
        writer committed first and the caller must reload.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user.id) & (_users.c.version == user.version))
                .values(
                    failed_login_attempts=user.failed_login_attempts,
                    locked_at=_to_iso(user.locked_at),
                    status=user.status.value,
                    last_login_at=_to_iso(user.last_login_at),
                    updated_at=_now_iso(),
                    version=user.version + 1,
                )
            )
            conn.commit()
        if result.rowcount != 1:
            return False
        user.version += 1
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleStore:
    """Repository for Role entities and their permission sets."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def find_by_name(self, name: str) -> Role | None:
        roles = self.find_by_names([name])
        return roles[0] if roles else None

    def find_by_names(self, names: Iterable[str]) -> list[Role]:
        """Batch-fetch roles and their permissions in two queries. Unknown names are skipped."""
        wanted = sorted(set(names))
        if not wanted:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().where(_roles.c.name.in_(wanted)).order_by(_roles.c.name)).fetchall()
            return _rows_to_roles(conn, rows)

    def exists_by_name(self, name: str) -> bool:
        with self.engine.connect() as conn:
            found = conn.execute(select(_roles.c.id).where(_roles.c.name == name)).first()
        return found is not None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.name)).fetchall()
            return _rows_to_roles(conn, rows)

    def save(self, role: Role) -> Role:
        """Insert or update a role, replacing its permission set. Returns the persisted form.

        Raises sqlalchemy.exc.IntegrityError if the name is already taken.
        """
        now = _now_iso()
        values = {"name": role.name, "description": role.description, "active": 1 if role.active else 0}
        with self.engine.connect() as conn:
            if role.id is None:
                result = conn.execute(_roles.insert().values(created_at=now, updated_at=now, **values))
                role_id = result.inserted_primary_key[0]
            else:
                role_id = role.id
                result = conn.execute(_roles.update().where(_roles.c.id == role_id).values(updated_at=now, **values))
                if result.rowcount == 0:
                    raise ResourceNotFoundError("Role", "id", role_id)
                conn.execute(_role_permissions.delete().where(_role_permissions.c.role_id == role_id))
            if role.permissions:
                conn.execute(
                    _role_permissions.insert(),
                    [{"role_id": role_id, "permission": p} for p in sorted(role.permissions)],
                )
            conn.commit()
        saved = self.find_by_name(role.name)
        if saved is None:
            raise ResourceNotFoundError("Role", "name", role.name)
        return saved


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


# Owned by update_lockout(); save() writes them on insert only.
_LOCKOUT_COLUMNS = frozenset({"status", "failed_login_attempts", "locked_at", "last_login_at"})


def _user_values(user: User) -> dict[str, Any]:
    return {
        "username": user.username,
        "email": user.email,
        "hashed_password": user.hashed_password,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "status": user.status.value,
        "enabled": 1 if user.enabled else 0,
        "failed_login_attempts": user.failed_login_attempts,
        "locked_at": _to_iso(user.locked_at),
        "last_login_at": _to_iso(user.last_login_at),
    }


def _resolve_role_ids(conn: Connection, names: Iterable[str]) -> list[int]:
    wanted = set(names)
    if not wanted:
        return []
    rows = conn.execute(select(_roles.c.id, _roles.c.name).where(_roles.c.name.in_(wanted))).fetchall()
    missing = wanted - {r.name for r in rows}
    if missing:
        raise ResourceNotFoundError("Role", "name", sorted(missing)[0])
    return [r.id for r in rows]


def _load_role_names(conn: Connection, user_id: int) -> set[str]:
    rows = conn.execute(
        select(_roles.c.name)
        .select_from(_user_roles.join(_roles, _user_roles.c.role_id == _roles.c.id))
        .where(_user_roles.c.user_id == user_id)
    ).fetchall()
    return {r.name for r in rows}


def _rows_to_roles(conn: Connection, rows) -> list[Role]:
    if not rows:
        return []
    ids = [r.id for r in rows]
    perm_rows = conn.execute(
        select(_role_permissions.c.role_id, _role_permissions.c.permission).where(_role_permissions.c.role_id.in_(ids))
    ).fetchall()
    perms: dict[int, set[str]] = {rid: set() for rid in ids}
    for pr in perm_rows:
        perms[pr.role_id].add(pr.permission)
    return [_row_to_role(r, perms[r.id]) for r in rows]


def _row_to_user(row, role_names: set[str]) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        status=AccountStatus(row.status),
        enabled=bool(row.enabled),
        failed_login_attempts=row.failed_login_attempts,
        locked_at=_from_iso(row.locked_at),
        last_login_at=_from_iso(row.last_login_at),
        roles=role_names,
        created_at=row.created_at,
        updated_at=row.updated_at,
        version=row.version,
    )


def _row_to_role(row, permissions: set[str]) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        active=bool(row.active),
        permissions=permissions,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
