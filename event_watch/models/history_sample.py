"""
HistorySample model — append-only followings count snapshots.
"""
from sqlalchemy import Column, Integer, Text, DateTime, Index

from event_watch.database import Base


class HistorySample(Base):
    __tablename__ = 'watchlist_history'
    __table_args__ = (
        Index('ix_watchlist_history_account_recorded_at', 'account', 'recorded_at'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    account = Column(Text, nullable=False)
    followings_count = Column(Integer, nullable=False, default=0)
    recorded_at = Column(DateTime(timezone=True), nullable=False)
