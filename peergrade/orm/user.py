"""
peergrade/orm/user.py
Platform user. Populated by the external account service; the engine only reads it.
"""
from enum import Enum as PyEnum
from typing import Any, Dict

from sqlalchemy import Column, String, Boolean, Enum as SQLEnum
from sqlalchemy.orm import relationship

from peergrade.orm.base import BaseModel, enum_values


class UserRole(str, PyEnum):
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


class User(BaseModel):
    __tablename__ = "users"
    
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    role = Column(
        SQLEnum(UserRole, values_callable=enum_values, native_enum=False),
        nullable=False,
        default=UserRole.STUDENT
    )
    is_active = Column(Boolean, nullable=False, default=True)
    
    enrollments = relationship("CourseEnrollment", back_populates="user")
    team_memberships = relationship("TeamMember", back_populates="student")
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role.value if self.role else None,
            "is_active": self.is_active,
        }
