"""
SQLAlchemy models and session handling for the vocabulary store.

The store follows the UMLS Metathesaurus layout:
- mrconso: concept rows (one per atom), keyed by source abbreviation + code
- mrsat:   attribute rows (property name/value per concept)
- mrrel:   relationships between atoms; REL='CHD' marks aui2 as a child of aui1

Loading the store is handled elsewhere; init_schema() exists for fixtures
and local tooling.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import Column, Index, Integer, String, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


class ConceptRow(Base):
    """Concept names and sources (MRCONSO)."""

    __tablename__ = "mrconso"

    aui = Column(String(20), primary_key=True)
    cui = Column(String(20), nullable=True)
    code = Column(String(100), nullable=False)
    sab = Column(String(40), nullable=False)
    tty = Column(String(40), nullable=True)  # term type: PT, OP, FN, ...
    name = Column("str", String(3000), nullable=True)
    lat = Column(String(3), nullable=True, default="ENG")
    ts = Column(String(1), nullable=True)
    ispref = Column(String(1), nullable=True)
    suppress = Column(String(1), nullable=True)


class ConceptAttribute(Base):
    """Simple concept attributes (MRSAT)."""

    __tablename__ = "mrsat"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cui = Column(String(20), nullable=True)
    code = Column(String(100), nullable=False)
    sab = Column(String(40), nullable=False)
    atn = Column(String(100), nullable=False)  # attribute name
    atv = Column(String(4000), nullable=True)  # attribute value


class Relationship(Base):
    """Related concepts (MRREL)."""

    __tablename__ = "mrrel"

    id = Column(Integer, primary_key=True, autoincrement=True)
    aui1 = Column(String(20), nullable=False)
    aui2 = Column(String(20), nullable=False)
    rel = Column(String(4), nullable=False)
    rela = Column(String(100), nullable=True)
    sab = Column(String(40), nullable=False)


Index("idx_mrconso_sab_code", ConceptRow.sab, ConceptRow.code)
Index("idx_mrsat_sab_atn", ConceptAttribute.sab, ConceptAttribute.atn)
Index("idx_mrrel_sab_rel", Relationship.sab, Relationship.rel)

# Columns of mrconso that a property filter may address directly
CONCEPT_FILTER_COLUMNS = {
    "TTY": ConceptRow.tty,
    "STR": ConceptRow.name,
    "LAT": ConceptRow.lat,
    "TS": ConceptRow.ts,
    "ISPREF": ConceptRow.ispref,
    "SUPPRESS": ConceptRow.suppress,
}


def make_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across sessions."""
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_engine(url, echo=echo, pool_pre_ping=True)


class VocabularyDatabase:
    """
    Read-only access to the vocabulary store.

    Sessions are short-lived: one per filter or closure query, closed as soon
    as the rows have been read.
    """

    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None, echo: bool = False):
        if engine is None:
            if url is None:
                raise ValueError("Either url or engine is required")
            engine = make_engine(url, echo=echo)
        self.engine = engine
        self._session_factory = sessionmaker(
            autoflush=False,
            bind=engine,
        )

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Open a session for the duration of one query."""
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    def init_schema(self) -> None:
        """Create the vocabulary tables if they do not exist."""
        Base.metadata.create_all(bind=self.engine)
        logger.info(f"Vocabulary schema ready on {self.engine.url}")

    def dispose(self) -> None:
        self.engine.dispose()
