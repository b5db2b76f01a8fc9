from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, Float, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from ..db.database import Base
from datetime import datetime, timezone

class Email(Base):
    __tablename__ = 'emails'
    # re-ingesting the same provider message for an account must never add a row
    __table_args__ = (UniqueConstraint('user_id', 'gmail_id', name='uq_emails_user_gmail'),)
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey('categories.id', ondelete='SET NULL'), nullable=True, index=True)
    gmail_id = Column(String, nullable=False, index=True)
    thread_id = Column(String, nullable=True)
    subject = Column(String, index=True)
    sender = Column(String, index=True)
    recipients = Column(JSON, default=list)
    body = Column(Text)
    html_body = Column(Text)
    clean_text = Column(Text)
    summary = Column(Text)
    category_confidence = Column(Float, default=0.0)
    is_read = Column(Boolean, default=False, index=True)
    is_archived = Column(Boolean, default=False)
    received_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    user = relationship("User", back_populates="emails")
    category = relationship("Category", back_populates="emails")

    @property
    def category_name(self):
        return self.category.name if self.category is not None else None
