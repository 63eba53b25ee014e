"""SQLAlchemy models mirroring the JSON client document."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, Index, String, Text, func

from .session import Base


class Client(Base):
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True)
    name = Column(Text, nullable=False)
    company = Column(Text, nullable=False, default="")
    email = Column(String(320), nullable=False)
    phone = Column(String(64), nullable=False, default="")
    plan = Column(String(32), nullable=False, default="Starter")
    status = Column(String(32), nullable=False, default="Pending")
    password_ciphertext = Column(Text, nullable=False)
    notes = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# Unicidade de e-mail sem diferenciar maiusculas
Index("clients_email_lower_idx", func.lower(Client.email), unique=True)
