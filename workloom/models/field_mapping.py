"""
FieldMapping model — ordered source → target field pairs for one CRM account.
"""
from sqlalchemy import Column, Integer, Text, Boolean, ForeignKey, UniqueConstraint

from workloom.database import Base


class FieldMapping(Base):
    __tablename__ = 'field_mappings'
    __table_args__ = (
        UniqueConstraint('account_id', 'target_field', name='uq_field_mapping_target'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Text, ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    source_field = Column(Text, nullable=False)   # Profile attribute, e.g. job_title
    target_field = Column(Text, nullable=False)   # CRM field, e.g. Title / jobtitle
    is_required = Column(Boolean, nullable=False, default=False)

    def to_dict(self):
        return {
            'source_field': self.source_field,
            'target_field': self.target_field,
            'is_required': self.is_required,
        }
