# Overview: Row locking and commit helpers for balance-bearing writes.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import BusinessRuleViolation
from ..extensions import db


CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"


def lock_for_update(query):
    """
    Apply row-level locking before mutating a balance.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def commit_or_conflict():
    """
    Commit the current unit of work.

    A version_id mismatch (another request moved the same balance first) or
    a lock timeout rolls the whole unit back and surfaces as a
    BusinessRuleViolation the caller can show and retry. Re-committing after
    the rollback would persist nothing, so no retry happens here.
    """
    try:
        db.session.commit()
    except (StaleDataError, OperationalError) as exc:
        db.session.rollback()
        current_app.logger.warning("Commit rejected by concurrent update: %s", exc)
        raise BusinessRuleViolation(
            CONCURRENT_MODIFICATION,
            "The record was changed by another operation; reload and try again",
        ) from exc
