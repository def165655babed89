"""School directory models.

The billing engine does not own these tables; it only reads school status and
active student counts through ``SchoolDirectory``.
"""

from sqlalchemy import Column, String
from sqlalchemy.orm import relationship

from app.models.base import BaseModel, SchoolScopedMixin, StatusMixin


class School(BaseModel, StatusMixin):
    """
    Tenant/School model - the multi-tenant anchor.
    """
    __tablename__ = "schools"
    
    name = Column(String(255), nullable=False)
    location = Column(String(255), nullable=True)
    
    # Relationships
    students = relationship("Student", back_populates="school", cascade="all, delete-orphan")
    billing_records = relationship("BillingRecord", back_populates="school", passive_deletes="all")
    
    def __repr__(self) -> str:
        return f"<School {self.name}>"


class Student(BaseModel, SchoolScopedMixin, StatusMixin):
    __tablename__ = "students"
    
    full_name = Column(String(255), nullable=False)
    admission_number = Column(String(50), nullable=True)
    
    school = relationship("School", back_populates="students")
    
    def __repr__(self) -> str:
        return f"<Student {self.full_name}>"
