from core.database import Base
from sqlalchemy import (Column, Integer, String)
from sqlalchemy.orm import relationship
from .mixins import CreatedAtMixin

class User(Base, CreatedAtMixin):
    """
    CMS administrator. Rows are created only by the setup flow; the auth
    routes read them but never write.
    """
    __tablename__ = "users"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #relationships
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")

    username = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
