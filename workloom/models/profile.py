"""
Profile model — one discovered person per mapping, keyed by (mapping_id, external_id).

Re-discovery updates the row in place. Departed profiles are kept and flagged
stale rather than deleted.
"""
import uuid

from sqlalchemy import Column, Text, Boolean, DateTime, JSON, ForeignKey, UniqueConstraint

from workloom.database import Base, utcnow


# Attributes a FieldMapping may use as source_field
EXPORTABLE_FIELDS = [
    'external_id',
    'name',
    'first_name',
    'last_name',
    'job_title',
    'company',
    'location',
    'profile_url',
    'image_url',
    'email',
]


class Profile(Base):
    __tablename__ = 'profiles'
    __table_args__ = (
        UniqueConstraint('mapping_id', 'external_id', name='uq_profile_mapping_external'),
    )

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    mapping_id = Column(Text, ForeignKey('mappings.id', ondelete='CASCADE'), nullable=False, index=True)
    external_id = Column(Text, nullable=False)   # LinkedIn public identifier
    name = Column(Text, default='')
    job_title = Column(Text, nullable=True)
    company = Column(Text, nullable=True)
    location = Column(Text, nullable=True)
    profile_url = Column(Text, default='')
    image_url = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    is_stale = Column(Boolean, nullable=False, default=False)
    crm_refs = Column(JSON, nullable=False, default=dict)   # account_id → remote record id
    first_seen_at = Column(DateTime, default=utcnow)
    last_seen_at = Column(DateTime, default=utcnow)

    @property
    def first_name(self):
        return (self.name or '').split(' ', 1)[0]

    @property
    def last_name(self):
        parts = (self.name or '').split(' ', 1)
        return parts[1] if len(parts) > 1 else ''

    def field_value(self, field):
        """Exportable attribute as a string ('' when unset)."""
        value = getattr(self, field, None)
        return '' if value is None else str(value)

    def to_dict(self):
        return {
            'id': self.id,
            'external_id': self.external_id,
            'name': self.name,
            'job_title': self.job_title,
            'company': self.company,
            'location': self.location,
            'profile_url': self.profile_url,
            'image_url': self.image_url,
            'email': self.email,
            'is_stale': self.is_stale,
            'mapping_id': self.mapping_id,
            'first_seen_at': self.first_seen_at.isoformat() if self.first_seen_at else None,
            'last_seen_at': self.last_seen_at.isoformat() if self.last_seen_at else None,
        }
