"""
InstagramEvent model — a post the classifier accepted as an event announcement.

post_id is unique: it is the durable backstop against classifying or storing
the same post twice.
"""
from sqlalchemy import Column, Integer, Text, Float, Boolean, DateTime, JSON
from sqlalchemy.sql import func

from event_watch.database import Base


class InstagramEvent(Base):
    __tablename__ = 'instagram_events'

    id = Column(Integer, primary_key=True, autoincrement=True)
    account = Column(Text, nullable=False, index=True)
    post_id = Column(Text, nullable=False, unique=True)
    post_url = Column(Text)
    post_date = Column(DateTime(timezone=True), index=True)
    caption = Column(Text)
    image_url = Column(Text)
    is_event = Column(Boolean, nullable=False, default=True)
    event_type = Column(Text, default='other')
    event_details = Column(JSON, default=dict)
    confidence_score = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self):
        return {
            'account': self.account,
            'post_id': self.post_id,
            'post_url': self.post_url,
            'post_date': self.post_date.isoformat() if self.post_date else None,
            'caption': self.caption,
            'image_url': self.image_url,
            'is_event': self.is_event,
            'event_type': self.event_type,
            'event_details': self.event_details or {},
            'confidence_score': self.confidence_score,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
