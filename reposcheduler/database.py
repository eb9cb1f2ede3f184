"""
Credential storage.

Uses SQLite with SQLAlchemy for the GitHub tokens jobs refer to through
their credential_ref. Tokens are looked up when a job executes, so rotating
a token affects jobs that are already scheduled.
"""

import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from sqlalchemy import create_engine, Column, String, DateTime
from sqlalchemy.orm import declarative_base, sessionmaker

from .models import DEFAULT_CREDENTIAL_REF

Base = declarative_base()

ENV_TOKEN_VAR = "GITHUB_TOKEN"


class Credential(Base):
    """Bearer token for one owner (or the single 'default' user)."""

    __tablename__ = "credentials"

    credential_ref = Column(String, primary_key=True)
    token = Column(String, nullable=False)
    github_login = Column(String, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


def _engine(db_path: Path):
    # Worker threads resolve tokens, so the connection must not be pinned to one thread.
    return create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})


def init_database(db_path: Path):
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy engine bound to the database
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = _engine(db_path)
    Base.metadata.create_all(engine)
    return engine


class CredentialStore:
    """Token lookup by credential_ref, backed by the credentials table."""

    def __init__(self, db_path: Path, env_fallback: bool = True):
        self.db_path = Path(db_path)
        self.env_fallback = env_fallback
        self._engine = init_database(self.db_path)
        self._Session = sessionmaker(bind=self._engine)

    def set_token(self, credential_ref: str, token: str, github_login: Optional[str] = None) -> None:
        with self._Session() as session:
            row = session.get(Credential, credential_ref)
            if row is None:
                session.add(Credential(
                    credential_ref=credential_ref, token=token, github_login=github_login
                ))
            else:
                row.token = token
                row.github_login = github_login
            session.commit()

    def get_token(self, credential_ref: str) -> Optional[str]:
        """Stored token, else $GITHUB_TOKEN for the default ref, else None."""
        with self._Session() as session:
            row = session.get(Credential, credential_ref)
            if row is not None:
                return row.token
        if self.env_fallback and credential_ref == DEFAULT_CREDENTIAL_REF:
            return os.getenv(ENV_TOKEN_VAR) or None
        return None

    def remove_token(self, credential_ref: str) -> bool:
        with self._Session() as session:
            row = session.get(Credential, credential_ref)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def list_refs(self) -> List[Tuple[str, Optional[str], datetime]]:
        with self._Session() as session:
            rows = session.query(Credential).order_by(Credential.credential_ref).all()
            return [(r.credential_ref, r.github_login, r.updated_at) for r in rows]

    def close(self) -> None:
        self._engine.dispose()
