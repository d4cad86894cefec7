"""
peergrade/orm/base.py
Base model for all ORM models
"""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Quantizers for stored numeric values
QUANTIZER_2DP = Decimal("0.01")
QUANTIZER_4DP = Decimal("0.0001")


def enum_values(enum_cls):
    """Persist enum values (not member names) in SQLEnum columns."""
    return [member.value for member in enum_cls]


class BaseModel(Base):
    """
    Abstract base model with common fields.
    All ORM models inherit from this.
    """
    __abstract__ = True
    
    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        index=True
    )
    
    created_at = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
        comment="Timestamp when record was created"
    )
    
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
        comment="Timestamp when record was last updated"
    )
