"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account / _row_to_otp / _row_to_revocation are the mappers. Services
and routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Uniqueness:
  users.email and users.username are UNIQUE at the schema level. create_account()
  lets sqlalchemy.exc.IntegrityError propagate so a caller that lost a race
  against a concurrent signup can tell "duplicate" apart from any other fault.

Timestamps:
  Stored as ISO 8601 UTC strings with fixed microsecond precision so that
  string comparison in SQL matches chronological order.

Cascades:
  user_otps and invalidated_tokens reference users(id) ON DELETE CASCADE.
  SQLite only enforces this with PRAGMA foreign_keys=ON, which is set per
  connection in _set_sqlite_pragmas().
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    literal,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import ALL_SESSIONS, Account, OneTimePasscode, OtpPurpose, RevocationRecord, Role

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("password_hash", Text),  # NULL for identity-provider accounts
    Column("role", String(20), nullable=False, server_default="user"),
    Column("is_verified", Boolean, nullable=False, server_default="0"),
    Column("display_name", String(255)),
    Column("picture_url", Text),
    Column("created_at", String(32), nullable=False),
)

_user_otps = Table(
    "user_otps",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("otp", String(6), nullable=False),
    Column("type", String(30), nullable=False),  # OtpPurpose value
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)

_invalidated_tokens = Table(
    "invalidated_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False),  # SHA-256 hex or ALL_SESSIONS
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL mode and foreign-key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. WAL is a no-op for in-memory databases.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Time helpers (shared with auth/otp.py and auth/revocation.py)
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime) -> str:
    """Serialize a UTC datetime in the fixed-width form every column uses."""
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account, OneTimePasscode and RevocationRecord rows.

    Usage:
        store = AccountStore("sqlite:///:memory:")
        uid = store.create_account(Account(username="alice", email="alice@x.com"))
        account = store.get_by_email("alice@x.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the email or username exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=account.username,
                    email=account.email,
                    password_hash=account.password_hash,
                    role=Role(account.role).value,
                    is_verified=account.is_verified,
                    display_name=account.display_name,
                    picture_url=account.picture_url,
                    created_at=isoformat(utcnow()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, account_id: int) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_username(self, username: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_account(row) if row is not None else None

    def email_or_username_taken(self, email: str, username: str) -> bool:
        """Cheap uniqueness pre-check for signup. The UNIQUE constraints stay authoritative."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_users.c.id).where((_users.c.email == email) | (_users.c.username == username)).limit(1)
            ).fetchone()
        return row is not None

    def list_accounts(self) -> list[Account]:
        """Return all accounts, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc())).fetchall()
        return [_row_to_account(r) for r in rows]

    def update_account(self, account_id: int, **fields) -> bool:
        """Update mutable fields on an existing account.

        Accepted fields: role, password_hash, is_verified.
        Returns True if a row was updated, False if account_id was not found.
        """
        unknown = set(fields) - {"role", "password_hash", "is_verified"}
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == account_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_account(self, account_id: int) -> bool:
        """Hard-delete an account. OTP and revocation rows go with it (CASCADE)."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == account_id))
            conn.commit()
        return result.rowcount > 0

    def count_accounts(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar() or 0

    def count_by_role(self) -> dict[str, int]:
        """Return {role: count} for every role that has at least one account."""
        with self.engine.connect() as conn:
            rows = conn.execute(select(_users.c.role, func.count()).group_by(_users.c.role)).fetchall()
        return {row[0]: row[1] for row in rows}

    def count_created_since(self, since: datetime) -> int:
        with self.engine.connect() as conn:
            return (
                conn.execute(
                    select(func.count()).select_from(_users).where(_users.c.created_at >= isoformat(since))
                ).scalar()
                or 0
            )

    # ------------------------------------------------------------------
    # One-time passcodes
    # ------------------------------------------------------------------

    def insert_otp(self, otp: OneTimePasscode) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _user_otps.insert().values(
                    user_id=otp.user_id,
                    otp=otp.code,
                    type=OtpPurpose(otp.purpose).value,
                    created_at=isoformat(utcnow()),
                    expires_at=otp.expires_at,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def find_otp(self, user_id: int, code: str, purpose: OtpPurpose, now: datetime) -> OneTimePasscode | None:
        """Return a matching unexpired OTP or None. Never matches across purposes."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _user_otps.select()
                .where(
                    (_user_otps.c.user_id == user_id)
                    & (_user_otps.c.otp == code)
                    & (_user_otps.c.type == OtpPurpose(purpose).value)
                    & (_user_otps.c.expires_at > isoformat(now))
                )
                .limit(1)
            ).fetchone()
        return _row_to_otp(row) if row is not None else None

    def delete_otp(self, otp_id: int) -> bool:
        """Delete one OTP row. False means another request consumed it first."""
        with self.engine.connect() as conn:
            result = conn.execute(_user_otps.delete().where(_user_otps.c.id == otp_id))
            conn.commit()
        return result.rowcount > 0

    def list_recent_otps(self, limit: int = 100) -> list[dict]:
        """Return OTP metadata joined with the owning account, newest first.

        The code column is deliberately not selected.
        """
        query = (
            select(
                _user_otps.c.id,
                _user_otps.c.user_id,
                _user_otps.c.type,
                _user_otps.c.created_at,
                _user_otps.c.expires_at,
                _users.c.username,
                _users.c.email,
            )
            .join(_users, _users.c.id == _user_otps.c.user_id)
            .order_by(_user_otps.c.created_at.desc())
            .limit(limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [dict(r._mapping) for r in rows]

    def purge_expired_otps(self, now: datetime) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_user_otps.delete().where(_user_otps.c.expires_at <= isoformat(now)))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Revocation ledger
    # ------------------------------------------------------------------

    def insert_revocation(self, record: RevocationRecord) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _invalidated_tokens.insert().values(
                    user_id=record.user_id,
                    token_hash=record.token_ref,
                    created_at=isoformat(utcnow()),
                    expires_at=record.expires_at,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def claim_revocation(self, record: RevocationRecord, now: datetime) -> bool:
        """Insert the entry unless an unexpired one already covers the token.

        A single INSERT ... SELECT ... WHERE NOT EXISTS statement, so of two
        concurrent claims on the same token exactly one inserts. The
        ALL_SESSIONS sentinel counts as covering every token of the account.
        Returns True when this call inserted the row.
        """
        covering = (
            select(_invalidated_tokens.c.id)
            .where(
                (_invalidated_tokens.c.user_id == record.user_id)
                & (_invalidated_tokens.c.token_hash.in_([record.token_ref, ALL_SESSIONS]))
                & (_invalidated_tokens.c.expires_at > isoformat(now))
            )
            .exists()
        )
        row = select(
            literal(record.user_id),
            literal(record.token_ref),
            literal(isoformat(utcnow())),
            literal(record.expires_at),
        ).where(~covering)
        with self.engine.connect() as conn:
            result = conn.execute(
                _invalidated_tokens.insert().from_select(
                    ["user_id", "token_hash", "created_at", "expires_at"], row
                )
            )
            conn.commit()
        return result.rowcount > 0

    def find_active_revocation(
        self, user_id: int, token_refs: Iterable[str], now: datetime
    ) -> RevocationRecord | None:
        """Return an unexpired ledger entry for user_id matching any of token_refs."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _invalidated_tokens.select()
                .where(
                    (_invalidated_tokens.c.user_id == user_id)
                    & (_invalidated_tokens.c.token_hash.in_(list(token_refs)))
                    & (_invalidated_tokens.c.expires_at > isoformat(now))
                )
                .limit(1)
            ).fetchone()
        return _row_to_revocation(row) if row is not None else None

    def purge_expired_revocations(self, now: datetime) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _invalidated_tokens.delete().where(_invalidated_tokens.c.expires_at <= isoformat(now))
            )
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        is_verified=bool(row.is_verified),
        display_name=row.display_name,
        picture_url=row.picture_url,
        created_at=row.created_at,
    )


def _row_to_otp(row) -> OneTimePasscode:
    return OneTimePasscode(
        id=row.id,
        user_id=row.user_id,
        code=row.otp,
        purpose=OtpPurpose(row.type),
        created_at=row.created_at,
        expires_at=row.expires_at,
    )


def _row_to_revocation(row) -> RevocationRecord:
    return RevocationRecord(
        id=row.id,
        user_id=row.user_id,
        token_ref=row.token_hash,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )
