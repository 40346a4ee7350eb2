"""
Tests for core models.
"""

import pytest
from pydantic import ValidationError

from core.models import (
    AnalysisResult, AnalyzableItem, ItemKind, JobRecord, JobStatus,
    ResultStatus, SheetKind, generate_id
)


def test_generate_id():
    """Test ID generation."""
    id1 = generate_id()
    id2 = generate_id()

    assert id1 != id2
    assert len(id1) == 36


def test_analyzable_item():
    """Test AnalyzableItem model."""
    item = AnalyzableItem(
        id="QCM#2",
        question_text="Quel est le traitement de première intention ?",
        options=["Metformine", "Insuline", "Régime seul"],
        provided_answer_raw="A",
    )

    assert item.kind == ItemKind.MCQ
    assert len(item.options) == 3
    assert item.case_text is None


def test_analyzable_item_is_frozen():
    """Items cannot be mutated once extracted."""
    item = AnalyzableItem(id="QCM#2", question_text="Q")

    with pytest.raises(ValidationError):
        item.question_text = "autre"


def test_analyzable_item_rejects_six_options():
    """Only options A-E are supported."""
    with pytest.raises(ValidationError):
        AnalyzableItem(id="QCM#2", question_text="Q", options=["1", "2", "3", "4", "5", "6"])


def test_analysis_result_failure():
    """Test failure constructor."""
    result = AnalysisResult.failure("QCM#2", "Missing from AI response")

    assert result.status == ResultStatus.ERROR
    assert not result.is_ok
    assert result.error == "Missing from AI response"
    assert result.correct_answers is None


def test_sheet_kind_item_kind():
    """Sheets map to their item class."""
    assert SheetKind.QCM.item_kind == ItemKind.MCQ
    assert SheetKind.CAS_QCM.item_kind == ItemKind.MCQ
    assert SheetKind.QROC.item_kind == ItemKind.QROC
    assert SheetKind.CAS_QROC.item_kind == ItemKind.QROC
    assert SheetKind.CAS_QROC.is_case
    assert not SheetKind.QCM.is_case


def test_job_record_defaults():
    """Test JobRecord model."""
    job = JobRecord(file_name="banque.xlsx")

    assert job.status == JobStatus.PENDING
    assert job.progress == 0
    assert not job.is_finished
    assert job.output_url is None


def test_job_record_progress_bounds():
    """Progress stays within 0-100."""
    with pytest.raises(ValidationError):
        JobRecord(progress=101)


def test_job_record_rejects_unknown_fields():
    """Unknown fields are errors, not silently dropped."""
    with pytest.raises(ValidationError):
        JobRecord(score=12)
