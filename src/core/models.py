"""
Core data models for the AI validation pipeline.

This module defines the Pydantic models exchanged between the pipeline,
the scheduler, the analyzer and the job store.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config.constants import OPTION_LETTERS


class ItemKind(str, Enum):
    """Class of question; each class has its own prompt and result shape."""
    MCQ = "mcq"
    QROC = "qroc"


class SheetKind(str, Enum):
    """Canonical sheet categories."""
    QCM = "qcm"
    CAS_QCM = "cas_qcm"
    QROC = "qroc"
    CAS_QROC = "cas_qroc"

    @property
    def item_kind(self) -> ItemKind:
        if self in (SheetKind.QCM, SheetKind.CAS_QCM):
            return ItemKind.MCQ
        return ItemKind.QROC

    @property
    def is_case(self) -> bool:
        return self in (SheetKind.CAS_QCM, SheetKind.CAS_QROC)


class ResultStatus(str, Enum):
    """Outcome of one analysis."""
    OK = "ok"
    ERROR = "error"


class JobStatus(str, Enum):
    """Status of a validation job."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def generate_id() -> str:
    """Generate a unique job ID."""
    return str(uuid.uuid4())


class AnalyzableItem(BaseModel):
    """
    One question extracted from a workbook row.

    The id is the only correlation key between request and response, so it
    must be unique within a run (sheet name + row index).
    """
    model_config = ConfigDict(frozen=True)

    id: str
    kind: ItemKind = ItemKind.MCQ
    question_text: str = ""
    options: List[str] = Field(default_factory=list)
    provided_answer_raw: Optional[str] = None
    case_text: Optional[str] = None

    @field_validator('options')
    @classmethod
    def at_most_five_options(cls, v: List[str]) -> List[str]:
        if len(v) > len(OPTION_LETTERS):
            raise ValueError(f"at most {len(OPTION_LETTERS)} options are supported")
        return v


class AnalysisResult(BaseModel):
    """Outcome for one AnalyzableItem."""
    id: str
    status: ResultStatus
    correct_answers: Optional[List[int]] = None
    option_explanations: Optional[List[str]] = None
    global_explanation: Optional[str] = None
    fixed_question_text: Optional[str] = None  # MCQ only
    fixed_options: Optional[List[str]] = None   # MCQ only, one per sent option
    suggested_answer: Optional[str] = None  # QROC only
    error: Optional[str] = None

    @property
    def is_ok(self) -> bool:
        return self.status == ResultStatus.OK

    @classmethod
    def failure(cls, item_id: str, message: str) -> "AnalysisResult":
        return cls(id=item_id, status=ResultStatus.ERROR, error=message)


class ChatResult(BaseModel):
    """Normalized chat-completion outcome."""
    content: str
    finish_reason: str = "stop"


@dataclass(frozen=True)
class ProgressEvent:
    """Scheduler progress snapshot, taken at batch completion time."""
    completed_batches: int
    total_batches: int
    completed_items: int
    total_items: int


class JobRecord(BaseModel):
    """
    External job-tracking record.

    Mutated through JobStore.update() only.
    """
    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    id: str = Field(default_factory=generate_id)
    file_name: str = ""
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    message: str = ""
    instructions: Optional[str] = None

    total_items: int = 0
    processed_items: int = 0
    current_batch: int = 0
    total_batches: int = 0

    successful_analyses: int = 0
    failed_analyses: int = 0
    fixed_count: int = 0

    output_url: Optional[str] = None
    error_message: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)
