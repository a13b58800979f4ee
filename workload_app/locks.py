"""
Database-backed lease serialising rebalancing sweeps.

Two sweeps running at the same time could move the same task twice or
push a member past capacity through interleaved writes.  A sweep
therefore holds a lease row in ``sweep_leases`` for its whole duration.
The row's primary key makes acquisition exclusive across requests,
threads and processes sharing the database.

A lease older than its TTL is treated as abandoned (for example, the
process holding it crashed) and is taken over by the next sweep.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import SweepInProgressError
from .models import SweepLease

logger = logging.getLogger(__name__)

REBALANCE_LEASE = "rebalance"


class SweepLock:
    """
    Exclusive lease on a named sweep.

    Usage::

        with SweepLock(session, holder_id=user_id, ttl_seconds=300):
            ...

    Raises:
        SweepInProgressError: when another live lease exists.
    """

    def __init__(
        self,
        session: Session,
        *,
        holder_id: str,
        ttl_seconds: int = 300,
        name: str = REBALANCE_LEASE,
    ) -> None:
        self.session = session
        self.holder_id = holder_id
        self.ttl = timedelta(seconds=ttl_seconds)
        self.name = name
        self.token: str | None = None

    def acquire(self) -> None:
        now = datetime.now(timezone.utc)
        expired = self.session.execute(
            delete(SweepLease)
            .where(SweepLease.name == self.name)
            .where(SweepLease.acquired_at < now - self.ttl)
            .execution_options(synchronize_session=False)
        )
        if expired.rowcount:
            logger.warning("Taking over stale sweep lease '%s'", self.name)

        token = uuid.uuid4().hex
        try:
            # Statement-level insert so the primary key check happens in the database.
            self.session.execute(
                insert(SweepLease).values(
                    name=self.name, token=token, holder_id=self.holder_id, acquired_at=now
                )
            )
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            holder = self.session.get(SweepLease, self.name)
            raise SweepInProgressError(
                self.name, holder.holder_id if holder is not None else None
            ) from exc

        self.token = token
        logger.info("Acquired sweep lease '%s' for user %s", self.name, self.holder_id)

    def release(self) -> None:
        if self.token is None:
            return
        try:
            # Drop anything left over from a failed move before touching the lease.
            self.session.rollback()
            self.session.execute(
                delete(SweepLease)
                .where(SweepLease.name == self.name)
                .where(SweepLease.token == self.token)
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
        except SQLAlchemyError:
            # The lease expires after its TTL; the sweep's own outcome wins.
            logger.exception("Failed to release sweep lease '%s'", self.name)
            self.session.rollback()
            return
        self.token = None
        logger.info("Released sweep lease '%s'", self.name)

    def __enter__(self) -> SweepLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

