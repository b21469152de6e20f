"""
WatchedAccount model — the main account and the accounts it follows.
"""
from sqlalchemy import Column, Integer, Text, DateTime, JSON
from sqlalchemy.sql import func

from event_watch.database import Base


class WatchedAccount(Base):
    __tablename__ = 'watchlist'

    id = Column(Integer, primary_key=True, autoincrement=True)
    account = Column(Text, nullable=False, unique=True)
    followings = Column(JSON, nullable=False, default=list)
    last_checked_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self):
        return {
            'account': self.account,
            'followings': list(self.followings or []),
            'last_checked_at': self.last_checked_at.isoformat() if self.last_checked_at else None,
        }
