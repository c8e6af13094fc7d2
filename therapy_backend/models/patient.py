"""Patient model definitions."""

from sqlalchemy import Column, Date, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from therapy_backend.database import Base
from therapy_backend.models.user import User


class Patient(Base):
    """Patient profile linked to a user account."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    date_of_birth = Column(Date)
    gender = Column(String)

    user = relationship(User)
