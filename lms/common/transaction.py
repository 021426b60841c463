"""Unit-of-work helper: one commit per business operation, full rollback on failure."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lms.common.exceptions import AppException, PersistenceError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run the enclosed block as a single transaction on *session*::

        async with unit_of_work(db):
            db.add(request)
            await create_audit_entry(db, ...)

    * Normal exit → ``COMMIT``.
    * ``AppException`` (validation / conflict / not-found) → ``ROLLBACK``
      and re-raise unchanged.
    * Any ``SQLAlchemyError`` → ``ROLLBACK`` and re-raise as
      ``PersistenceError`` so callers see a retryable 500.
    """
    try:
        yield session
        await session.commit()
    except AppException:
        await session.rollback()
        raise
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("Transaction rolled back after database error")
        raise PersistenceError() from exc
    except Exception:
        await session.rollback()
        raise
