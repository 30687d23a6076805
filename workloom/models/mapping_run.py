"""
MappingRun model — one timestamped execution of a Mapping and its delta report.
"""
import uuid

from sqlalchemy import Column, Integer, Text, DateTime, ForeignKey

from workloom.database import Base, utcnow


class MappingRun(Base):
    __tablename__ = 'mapping_runs'

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    mapping_id = Column(Text, ForeignKey('mappings.id', ondelete='CASCADE'), nullable=False, index=True)
    run_date = Column(DateTime, default=utcnow)
    status = Column(Text, nullable=False, default='IN_PROGRESS')
    total_found = Column(Integer, nullable=False, default=0)
    new_profiles = Column(Integer, nullable=False, default=0)
    departures = Column(Integer, nullable=False, default=0)
    job_changes = Column(Integer, nullable=False, default=0)
    scraping_job_id = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'mapping_id': self.mapping_id,
            'run_date': self.run_date.isoformat() if self.run_date else None,
            'status': self.status,
            'total_found': self.total_found,
            'new_profiles': self.new_profiles,
            'departures': self.departures,
            'job_changes': self.job_changes,
            'scraping_job_id': self.scraping_job_id,
            'error_message': self.error_message,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
        }
