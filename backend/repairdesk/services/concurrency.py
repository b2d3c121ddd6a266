# Overview: Storage-level atomicity primitives shared by every workflow service.

"""
Concurrency primitives for a database layer without interactive transactions.

The deployment sits behind a pooling proxy that does not keep a connection
pinned across round trips, so the services never read inside a transaction
and then write based on what they read. Instead:

- reads are plain, lock-free queries;
- writes are grouped with `atomic_batch`: a fixed list of inserts/updates
  that are sent together and committed as one unit, or rolled back together;
- a read-then-write check that must still hold at write time is expressed as
  a `Guarded` single-row conditional update. If it touches no row the whole
  batch is discarded and the guard's error is raised;
- counters are bumped with `upsert_increment` (INSERT ... ON CONFLICT DO UPDATE).
"""

from __future__ import annotations

import logging
import time

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, OperationalError

from ..exceptions import WorkflowError
from ..extensions import db

logger = logging.getLogger(__name__)

# Unique-key races on first insert and lock contention; both are safe to replay.
RETRYABLE_ERRORS = (IntegrityError, OperationalError)


class Guarded:
    """
    Conditional single-row write that must affect at least one row.

    Usage:
        Guarded(
            update(stock).where(stock.c.id == sid, stock.c.qty >= 3).values(qty=stock.c.qty - 3),
            error=ConcurrencyConflict("stock changed", stock_level_id=sid),
        )
    """

    __slots__ = ("statement", "error")

    def __init__(self, statement, *, error: WorkflowError):
        self.statement = statement
        self.error = error

    def __repr__(self) -> str:
        return f"<Guarded error={self.error.code}>"


def atomic_batch(*writes) -> list:
    """
    Apply a fixed set of writes as one indivisible unit.

    Each write is one of:
    - a model instance: inserted (flushed so later writes can reference its id)
    - a Guarded statement: executed; zero affected rows aborts the batch
    - any other executable statement: executed as-is

    Returns one result per write, in order (the instance itself for inserts).
    On any failure the session is rolled back and the exception re-raised.
    """
    results = []
    try:
        for write in writes:
            if isinstance(write, Guarded):
                result = db.session.execute(write.statement)
                if result.rowcount < 1:
                    raise write.error
            elif isinstance(write, db.Model):
                db.session.add(write)
                db.session.flush()
                result = write
            else:
                result = db.session.execute(write)
            results.append(result)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return results


def dialect_insert(table):
    """INSERT construct of the bound dialect (supports ON CONFLICT)."""
    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"upsert is not supported on {dialect}")


def upsert_increment(table, *, keys: dict, increments: dict, touch: dict | None = None):
    """
    Build INSERT ... ON CONFLICT (keys) DO UPDATE SET col = col + excluded.col.

    `increments` doubles as the initial values when the row does not exist yet.
    `touch` holds extra columns written on both paths (e.g. updated_at).
    """
    touch = touch or {}
    stmt = dialect_insert(table).values(**keys, **increments, **touch)
    set_ = {col: table.c[col] + stmt.excluded[col] for col in increments}
    set_.update(touch)
    return stmt.on_conflict_do_update(index_elements=list(keys), set_=set_)


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    delay: float = 0.01,
    retry_on=RETRYABLE_ERRORS,
    exhausted=None,
):
    """
    Execute a DB operation with bounded retry on concurrency-related failures.

    The wait before attempt n+1 is `delay * n`. When attempts run out,
    `exhausted(attempts=...)` is raised from the last error if given,
    otherwise the last error propagates.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            if attempt >= attempts:
                if exhausted is not None:
                    raise exhausted(attempts=attempts) from exc
                raise
            logger.warning(
                "Retrying after %s (attempt %d/%d)",
                exc.__class__.__name__, attempt, attempts,
            )
            time.sleep(delay * attempt)
