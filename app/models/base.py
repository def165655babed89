"""Base Models and Mixins"""

import uuid
from sqlalchemy import Column, DateTime, Boolean, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declared_attr

from app.database import Base
from app.utils.time import get_utc_now


class BaseModel(Base):
    """
    Base model class with common fields for all models.
    
    Provides:
    - UUID primary key
    - created_at timestamp
    - updated_at timestamp
    """
    __abstract__ = True
    
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    created_at = Column(DateTime, default=get_utc_now, nullable=False)
    updated_at = Column(DateTime, default=get_utc_now, onupdate=get_utc_now, nullable=False)


class SchoolScopedMixin:
    """
    Mixin for multi-tenant models scoped to a school.
    
    Provides:
    - school_id foreign key

    ``school_ondelete`` sets what happens to rows when their school is deleted.
    """
    school_ondelete = "CASCADE"
    
    @declared_attr
    def school_id(cls):
        return Column(
            UUID(as_uuid=True),
            ForeignKey("schools.id", ondelete=cls.school_ondelete),
            nullable=False,
            index=True
        )


class StatusMixin:
    """is_active flag for directory entities"""
    is_active = Column(Boolean, default=True, nullable=False, index=True)
