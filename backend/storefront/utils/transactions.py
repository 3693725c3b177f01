from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session, SessionTransaction


@contextmanager
def smart_transaction(session: Session) -> Iterator[SessionTransaction]:
    """
    Run a block of writes atomically on `session`.

    Inside an open transaction the block becomes a SAVEPOINT, so a failure only
    rolls back the block; otherwise a top-level transaction is opened and
    committed on exit.
    """
    tx = session.begin_nested() if session.in_transaction() else session.begin()
    with tx:
        yield tx
