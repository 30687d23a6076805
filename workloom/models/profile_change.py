"""
ProfileChange model — one row per profile per run delta (the evidence trail).
"""
from sqlalchemy import Column, Integer, Text, DateTime, JSON, ForeignKey

from workloom.database import Base, utcnow


class ProfileChange(Base):
    __tablename__ = 'profile_changes'

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Text, ForeignKey('mapping_runs.id', ondelete='CASCADE'), nullable=False, index=True)
    profile_id = Column(Text, ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False)
    change_type = Column(Text, nullable=False)   # NEW_ARRIVAL / DEPARTURE / JOB_CHANGE
    previous = Column(JSON, nullable=True)       # {job_title, company} before the run
    current = Column(JSON, nullable=True)        # {job_title, company} after the run
    created_at = Column(DateTime, default=utcnow)

    def to_dict(self):
        return {
            'profile_id': self.profile_id,
            'change_type': self.change_type,
            'previous': self.previous,
            'current': self.current,
        }
