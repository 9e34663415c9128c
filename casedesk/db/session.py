from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Engine / Session factory
# ---------------------------------------------------------------------------

def _is_in_memory(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


class Database:
    """
    One engine and session factory per application instance.

    An in-memory SQLite URL keeps a single shared connection, so every
    session sees the same data for the life of the engine.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url

        # SQLite needs a special flag when used in a multi-threaded web app.
        connect_args: dict[str, object] = {}
        engine_options: dict[str, object] = {}
        if url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
            if _is_in_memory(url):
                engine_options["poolclass"] = StaticPool

        self.engine: Engine = create_engine(
            url,
            echo=echo,
            connect_args=connect_args,
            **engine_options,
        )
        self._sessions = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
            class_=Session,
        )

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)
        logger.debug(f"Database schema ready at {self.engine.url!r}")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        One unit of work: committed on success, rolled back on error.

            with database.session() as db:
                ...
        """
        db = self._sessions()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


__all__ = ["Database"]
