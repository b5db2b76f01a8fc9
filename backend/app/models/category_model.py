from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from ..db.database import Base
from datetime import datetime, timezone

DEFAULT_COLOR = '#3B82F6'

class Category(Base):
    __tablename__ = 'categories'
    __table_args__ = (UniqueConstraint('user_id', 'name', name='uq_categories_user_name'),)
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String, nullable=False)
    # used verbatim in the classification prompt
    description = Column(Text, nullable=False)
    color = Column(String, default=DEFAULT_COLOR)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    user = relationship("User", back_populates="categories")
    emails = relationship("Email", back_populates="category", passive_deletes=True)
