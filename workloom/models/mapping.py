"""
Mapping model — a saved people search tracked over time.
"""
import uuid

from sqlalchemy import Column, Integer, Text, DateTime

from workloom.database import Base, utcnow


class Mapping(Base):
    __tablename__ = 'mappings'

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    # Search criteria, NULL means "match any"
    job_title = Column(Text, nullable=True)
    company = Column(Text, nullable=True)
    country = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default='CREATED')
    last_run_at = Column(DateTime, nullable=True)
    next_run_at = Column(DateTime, nullable=True)
    # Denormalized counters, maintained by the run engine
    profiles_count = Column(Integer, nullable=False, default=0)
    runs_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'job_title': self.job_title,
            'company': self.company,
            'country': self.country,
            'status': self.status,
            'user_id': self.user_id,
            'last_run_at': self.last_run_at.isoformat() if self.last_run_at else None,
            'next_run_at': self.next_run_at.isoformat() if self.next_run_at else None,
            'profiles_count': self.profiles_count or 0,
            'runs_count': self.runs_count or 0,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
