"""Models package for the trial balance classifier."""
from backend.models.schema import Base, FileRecord
from backend.models.job import JobRun, JobProgress, JobStatus, JobType

__all__ = ['Base', 'FileRecord', 'JobRun', 'JobProgress', 'JobStatus', 'JobType']
