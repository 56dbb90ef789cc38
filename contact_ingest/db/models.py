"""
Client and contact tables written by the import pipeline.
"""
import logging
from typing import Optional

from sqlalchemy import Column, Integer, String
from sqlalchemy.engine import Engine

from contact_ingest.db.session import Base, get_engine

logger = logging.getLogger(__name__)


class Client(Base):
    """Owning client entity, keyed by its business number."""
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    num_client = Column(String(100), unique=True, index=True, nullable=False)
    profile = Column(String(100), nullable=True)
    status = Column(String(50), nullable=True, default="active")
    raison_sociale = Column(String(150), nullable=True)

    def __repr__(self) -> str:
        return f"<Client {self.num_client} status={self.status!r}>"


class Contact(Base):
    """
    Contact person attached to a client.

    ``num_client`` is a plain indexed column, not a foreign key, so contacts
    can be bulk inserted before or alongside their client upsert.
    """
    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True, index=True)
    num_client = Column(String(100), index=True, nullable=False)
    nom = Column(String(100), nullable=False, default="")
    prenom = Column(String(100), nullable=False, default="")
    raison_sociale = Column(String(150), nullable=True)
    fonction = Column(String(100), nullable=False, default="")
    email = Column(String(100), nullable=False, default="")
    num_tel = Column(String(20), nullable=True)

    def __repr__(self) -> str:
        return f"<Contact {self.id} client={self.num_client}>"


def create_contact_tables(engine: Optional[Engine] = None) -> None:
    """Create the clients and contacts tables if they do not exist yet."""
    engine = engine or get_engine()
    Base.metadata.create_all(engine, tables=[Client.__table__, Contact.__table__])
    logger.info("clients/contacts tables ready")
