"""
auth/store.py -- SQLAlchemy Core persistence layer for users.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Components and
routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Uniqueness:
  email and (oauth_provider, external_id) carry SQL UNIQUE constraints.
  SQLite (like PostgreSQL) treats NULLs as distinct, so any number of
  password-only users (NULL external_id) and OAuth-only users (NULL email)
  coexist. The constraint is what makes concurrent first OAuth logins
  converge: the loser's INSERT raises IntegrityError, surfaced here as
  ConflictError, and the linker retries as a lookup.

Timestamps are stored as UTC ISO 8601 text and mapped back to aware
datetimes.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, UniqueConstraint, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import ConflictError, NotFoundError
from auth.models import User
from auth.policy import normalize_email

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True),  # NULL allowed for OAuth-only users
    Column("name", String(255), nullable=False, server_default=""),
    Column("password_hash", Text),  # NULL for OAuth-only users
    Column("oauth_provider", String(30)),
    Column("external_id", String(255)),
    Column("external_access_token", Text),
    Column("external_refresh_token", Text),
    Column("reset_token_hash", String(64), index=True),  # sha256 hex
    Column("reset_token_expiry", String(40)),
    Column("password_changed_at", String(40)),
    Column("created_at", String(40), nullable=False),
    UniqueConstraint("oauth_provider", "external_id", name="uq_users_external_identity"),
)

# Columns update_user() accepts. Validated before any SQL is built.
_MUTABLE_FIELDS = frozenset(
    {
        "email",
        "name",
        "password_hash",
        "oauth_provider",
        "external_id",
        "external_access_token",
        "external_refresh_token",
        "reset_token_hash",
        "reset_token_expiry",
        "password_changed_at",
    }
)
_DATETIME_FIELDS = frozenset({"reset_token_expiry", "password_changed_at", "created_at"})


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _check_reachable(password_hash: str | None, external_id: str | None) -> None:
    if password_hash is None and external_id is None:
        raise ValueError("A user needs a password hash or an external identity")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user_id = store.create_user(User(name="Jo", email="jo@x.com", password_hash=digest))
        user = store.get_by_email("jo@x.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        # hide_parameters keeps password and token hashes out of error messages.
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, hide_parameters=True)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Lookups -- return None when absent
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively (emails are stored lower-cased)."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_external_id(self, provider: str, external_id: str) -> User | None:
        """Look up a user by (oauth_provider, external_id)."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.oauth_provider == provider) & (_users.c.external_id == external_id))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_reset_token_hash(self, token_hash: str) -> User | None:
        """Look up the user holding a pending reset token with this hash.

        Expiry is not checked here; ResetTokenManager owns that decision.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.reset_token_hash == token_hash)).fetchone()
        return _row_to_user(row) if row is not None else None

    def email_exists(self, email: str) -> bool:
        return self.get_by_email(email) is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises:
            ConflictError: email or (oauth_provider, external_id) already taken.
            ValueError:    the record has neither a password hash nor an
                           external identity.
        """
        _check_reachable(user.password_hash, user.external_id)
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=normalize_email(user.email) if user.email else None,
                        name=user.name or "",
                        password_hash=user.password_hash,
                        oauth_provider=user.oauth_provider,
                        external_id=user.external_id,
                        external_access_token=user.external_access_token,
                        external_refresh_token=user.external_refresh_token,
                        reset_token_hash=user.reset_token_hash,
                        reset_token_expiry=_to_iso(user.reset_token_expiry),
                        password_changed_at=_to_iso(user.password_changed_at),
                        created_at=_to_iso(user.created_at or _now()),
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise ConflictError("a user with that email or external identity already exists") from exc

    def update_user(self, user_id: int, **fields) -> None:
        """Update mutable fields on an existing user.

        Only keys in _MUTABLE_FIELDS are accepted; unknown keys raise
        ValueError rather than being silently ignored. datetime values are
        converted to ISO text.

        Raises:
            NotFoundError: no user with user_id.
            ConflictError: the change collides with another user's email or
                           external identity.
            ValueError:    unknown field, or the change would leave the record
                           with neither a password hash nor an external identity.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if not fields:
            return
        if "password_hash" in fields or "external_id" in fields:
            current = self.get_by_id(user_id)
            if current is None:
                raise NotFoundError(f"user {user_id} not found")
            _check_reachable(
                fields.get("password_hash", current.password_hash),
                fields.get("external_id", current.external_id),
            )

        values = dict(fields)
        for key in _DATETIME_FIELDS & values.keys():
            values[key] = _to_iso(values[key])
        if values.get("email"):
            values["email"] = normalize_email(values["email"])

        try:
            with self.engine.connect() as conn:
                result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("update collides with another user's email or external identity") from exc
        if result.rowcount == 0:
            raise NotFoundError(f"user {user_id} not found")

    def save(self, user: User) -> User:
        """Insert-or-update. Inserts when user.id is None, otherwise writes every
        mutable field. Returns the record as stored.
        """
        if user.id is None:
            user_id = self.create_user(user)
        else:
            user_id = user.id
            self.update_user(user_id, **{name: getattr(user, name) for name in _MUTABLE_FIELDS})
        saved = self.get_by_id(user_id)
        if saved is None:
            raise NotFoundError(f"user {user_id} vanished after write")
        return saved

    def set_reset_token(self, user_id: int, token_hash: str, expiry: datetime) -> None:
        """Record a pending reset token, replacing any previous one."""
        self.update_user(user_id, reset_token_hash=token_hash, reset_token_expiry=expiry)

    def clear_reset_token(self, user_id: int) -> None:
        self.update_user(user_id, reset_token_hash=None, reset_token_expiry=None)

    def complete_reset(self, user_id: int, token_hash: str, password_hash: str, changed_at: datetime) -> bool:
        """Swap in a new password hash if the reset token is still pending.

        The WHERE clause re-checks reset_token_hash, so of two concurrent
        consumers of one token only the first write matches. Returns False
        when the token was already spent or replaced.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.reset_token_hash == token_hash))
                .values(
                    password_hash=password_hash,
                    reset_token_hash=None,
                    reset_token_expiry=None,
                    password_changed_at=_to_iso(changed_at),
                )
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=row.password_hash,
        oauth_provider=row.oauth_provider,
        external_id=row.external_id,
        external_access_token=row.external_access_token,
        external_refresh_token=row.external_refresh_token,
        reset_token_hash=row.reset_token_hash,
        reset_token_expiry=_from_iso(row.reset_token_expiry),
        password_changed_at=_from_iso(row.password_changed_at),
        created_at=_from_iso(row.created_at),
    )
