# Overview: Service-layer operations for concurrency; conditional updates decide races.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db


def compare_and_swap(model, row_id: int, *, expected: dict, values: dict) -> bool:
    """
    UPDATE model SET values WHERE id = row_id AND every expected column matches.

    Returns True if this caller won (exactly one row changed). The caller
    still owns the transaction and must commit or roll back.

    NOTE: the session is not synchronized; reload the row with
    populate_existing before reading the new values.
    """
    stmt = update(model).where(model.id == row_id)
    for column, value in expected.items():
        stmt = stmt.where(getattr(model, column) == value)
    stmt = stmt.values(**values).execution_options(synchronize_session=False)

    result = db.session.execute(stmt)
    return result.rowcount == 1
