"""
Atomic INSERT ... ON CONFLICT DO UPDATE for the dialects we deploy on
(PostgreSQL in production, SQLite in development and tests).
"""

from sqlalchemy import case, or_
from sqlalchemy.dialects import postgresql, sqlite

from ats_pickem import db

TOUCH_COLUMN = "updated_at"

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dialect_insert(table):
    """Dialect-specific insert() supporting on_conflict_do_update"""
    dialect = db.session.get_bind().dialect.name
    try:
        return _INSERT_BY_DIALECT[dialect](table)
    except KeyError:
        raise NotImplementedError(f"Upsert is not supported on {dialect}") from None


def upsert(model, values, conflict_cols, update_columns=None, extra_set=None):
    """
    Insert a row or update it in place when the natural key already exists.

    Args:
        model: Mapped class whose table is written
        values: Column values for the row, natural key included
        conflict_cols: Columns of the unique constraint to conflict on
        update_columns: Columns to overwrite from the new values
            (default: every supplied column outside the key)
        extra_set: Additional SET expressions, e.g. counters

    Concurrent callers on the same key converge on one row instead of
    failing with a duplicate-key error. ``updated_at`` only moves when one
    of the updated columns actually changes, so rewriting identical values
    leaves the row untouched.
    """
    table = model.__table__

    # Python-side column defaults do not run for ON CONFLICT updates,
    # so timestamps are supplied explicitly.
    for column in table.columns:
        if column.name not in values and column.default is not None and column.default.is_callable:
            values[column.name] = column.default.arg(None)

    stmt = dialect_insert(table).values(**values)

    if update_columns is None:
        update_columns = [
            name
            for name in values
            if name not in conflict_cols and name not in ("created_at", TOUCH_COLUMN)
        ]

    set_ = {name: stmt.excluded[name] for name in update_columns}
    if extra_set:
        set_.update(extra_set)

    if TOUCH_COLUMN in values and TOUCH_COLUMN not in set_ and update_columns:
        if extra_set:
            set_[TOUCH_COLUMN] = stmt.excluded[TOUCH_COLUMN]
        else:
            changed = or_(
                *(table.c[name].is_distinct_from(stmt.excluded[name]) for name in update_columns)
            )
            set_[TOUCH_COLUMN] = case(
                (changed, stmt.excluded[TOUCH_COLUMN]), else_=table.c[TOUCH_COLUMN]
            )

    if set_:
        stmt = stmt.on_conflict_do_update(index_elements=conflict_cols, set_=set_)
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=conflict_cols)

    return db.session.execute(stmt)
