"""
Storage module for validation job tracking.
"""

from storage.job_store import JobStore, InMemoryJobStore, FileJobStore

__all__ = [
    'JobStore',
    'InMemoryJobStore',
    'FileJobStore',
]
