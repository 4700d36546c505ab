"""
SQLAlchemy models for the trial balance classifier.

This module defines the database schema using SQLAlchemy ORM,
matching the schema defined in Alembic migrations.
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Boolean, Column, BigInteger, String, TIMESTAMP, JSON,
    ForeignKey, CheckConstraint, Index, text
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), 'postgresql')


def _new_id() -> str:
    return str(uuid.uuid4())


class FileRecord(Base):
    """Represents an uploaded trial balance document."""

    __tablename__ = 'files'
    __table_args__ = (
        CheckConstraint(
            "category IN ('excel', 'pdf')",
            name='files_category_check'
        ),
        Index('idx_files_user_created', 'user_id', 'created_at'),
        Index('idx_files_converted_from', 'converted_from_file_id'),
        {'comment': 'Uploaded trial balance documents'}
    )

    id = Column(
        String(36),
        primary_key=True,
        default=_new_id,
        nullable=False
    )
    filename = Column(
        String(255),
        nullable=False,
        comment='Original filename as uploaded'
    )
    size = Column(
        BigInteger,
        nullable=False,
        comment='File size in bytes'
    )
    type = Column(
        String(255),
        nullable=True,
        comment='MIME type reported at upload'
    )
    category = Column(
        String(20),
        nullable=False,
        comment='excel or pdf'
    )
    url = Column(
        String(1024),
        nullable=True,
        comment='API download URL'
    )
    user_id = Column(
        String(255),
        nullable=False,
        comment='Owner of the file'
    )
    storage_path = Column(
        String(512),
        nullable=False,
        comment='Object path inside the storage bucket'
    )
    created_at = Column(
        TIMESTAMP,
        default=datetime.utcnow,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False,
        comment='Upload timestamp'
    )

    # Reformatting
    reformatted = Column(
        Boolean,
        default=False,
        server_default=text('false'),
        nullable=False,
        comment='Columns have been normalised'
    )
    reformatted_at = Column(TIMESTAMP, nullable=True)
    has_account_type = Column(
        Boolean,
        nullable=True,
        comment='Source layout already had an account type column'
    )

    # Classification
    processed_data = Column(
        JSONType,
        nullable=True,
        comment='Classification rows: [account type, primary, secondary, tertiary]'
    )
    processed_at = Column(TIMESTAMP, nullable=True)
    last_modified = Column(TIMESTAMP, nullable=True)

    # Worksheet snapshot
    excel_data = Column(
        JSONType,
        nullable=True,
        comment='Parsed worksheets after the last reformat/process'
    )
    excel_data_updated_at = Column(TIMESTAMP, nullable=True)

    # PDF conversion
    is_converted_from_pdf = Column(
        Boolean,
        default=False,
        server_default=text('false'),
        nullable=False
    )
    converted_from_file_id = Column(
        String(36),
        ForeignKey('files.id', ondelete='SET NULL'),
        nullable=True,
        comment='Source PDF for converted workbooks'
    )

    # Relationships
    jobs = relationship('JobRun', back_populates='file')

    def __repr__(self):
        return f"<FileRecord(id='{self.id}', filename='{self.filename}', category='{self.category}')>"

    def to_dict(self) -> dict:
        """Convert file record to dictionary representation."""
        def iso(value):
            return value.isoformat() if value else None

        return {
            'id': self.id,
            'filename': self.filename,
            'size': self.size,
            'type': self.type,
            'category': self.category,
            'url': self.url,
            'user_id': self.user_id,
            'storage_path': self.storage_path,
            'created_at': iso(self.created_at),
            'reformatted': bool(self.reformatted),
            'reformatted_at': iso(self.reformatted_at),
            'has_account_type': self.has_account_type,
            'processed_data': self.processed_data,
            'processed_at': iso(self.processed_at),
            'last_modified': iso(self.last_modified),
            'excel_data_updated_at': iso(self.excel_data_updated_at),
            'is_converted_from_pdf': bool(self.is_converted_from_pdf),
            'converted_from_file_id': self.converted_from_file_id
        }
