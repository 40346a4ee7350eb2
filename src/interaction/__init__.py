"""
Interaction module for user interface.

Provides display utilities for the CLI.
"""

from .live_progress import LiveJobDisplay, JobSnapshot

__all__ = [
    "LiveJobDisplay",
    "JobSnapshot",
]
