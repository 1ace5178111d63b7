# -*- coding: utf-8 -*-

"""Write transaction (unit-of-work) helper.

An entity graph created from a single payload (eg. a Location together with
the back-referenced Thing link) is committed as one unit:
- the wire model produces session-less instances, nothing is visible yet
- the entity service adds and flushes them inside ``write_transaction``
- commit happens when the outermost transaction exits without error,
  any exception rolls back everything
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

import stacore

_TX_DEPTH: ContextVar[int] = ContextVar("sta_tx_depth", default=0)


def in_transaction() -> bool:
    """Return True when a write transaction is active in this context."""
    return _TX_DEPTH.get() > 0


@contextmanager
def write_transaction(session: Any = None) -> Iterator[Any]:
    """Commit on success, roll back on error.

    Nested use joins the outer transaction: only the outermost block commits.
    """
    if session is None:
        session = stacore.DB.session

    depth = _TX_DEPTH.get()
    token = _TX_DEPTH.set(depth + 1)
    try:
        yield session
        if depth == 0:
            session.commit()
    except Exception:
        if depth == 0:
            stacore.log.debug("Rolling back write transaction")
            session.rollback()
        raise
    finally:
        _TX_DEPTH.reset(token)
