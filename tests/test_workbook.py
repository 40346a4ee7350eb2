"""
Tests for workbook reading, extraction and merge helpers.
"""

from io import BytesIO

import pytest
from openpyxl import Workbook

from core.exceptions import InvalidWorkbookError
from core.models import AnalysisResult, ResultStatus, SheetKind
from utils.text import canonical_columns
from workbook import io as workbook_io
from workbook.extraction import extract_row
from workbook.merge import answers_match, append_explanation, merge_result


def loaded_sheet(rows):
    wb = Workbook()
    ws = wb.active
    ws.title = "QCM"
    for row in rows:
        ws.append(row)
    buffer = BytesIO()
    wb.save(buffer)
    loaded = workbook_io.load(buffer.getvalue())
    return loaded, workbook_io.read_rows(loaded, "QCM")


def test_read_rows_headers_and_blank_rows():
    """Duplicate and blank headers are renamed, blank rows skipped."""
    _, sheet = loaded_sheet([
        ["Question", "Option A", "Option A", None, "Réponse"],
        ["Q1", "a", "b", "x", "A"],
        [None, None, None, None, None],
        ["Q2", "c", None, None, "B"],
    ])

    assert sheet.headers == ["Question", "Option A", "Option A_1", "colonne_4", "Réponse"]
    assert len(sheet.rows) == 2
    assert sheet.rows[1]["Option A_1"] == ""


def test_load_rejects_garbage():
    """Non-xlsx bytes raise InvalidWorkbookError."""
    with pytest.raises(InvalidWorkbookError):
        workbook_io.load(b"PK not really a zip")
    with pytest.raises(InvalidWorkbookError):
        workbook_io.load(b"")


def test_data_url():
    """Output bytes travel as an xlsx data URL."""
    url = workbook_io.to_data_url(b"xlsx-bytes")

    assert url.startswith("data:application/vnd.openxmlformats-officedocument.spreadsheetml.sheet;base64,")
    assert workbook_io.from_data_url(url) == b"xlsx-bytes"
    with pytest.raises(ValueError):
        workbook_io.from_data_url("data:text/plain;base64,eA==")


def test_extract_row_stamps_pending():
    """Every extracted row starts unfixed with a pending reason."""
    _, sheet = loaded_sheet([["Question", "Option A", "Option B", "Réponse"], ["Quel organe", "foie", "rein", "a;b"]])

    source = extract_row(sheet, SheetKind.QCM, 0, canonical_columns(sheet.headers))

    assert source.item.id == "QCM#2"
    assert source.item.provided_answer_raw == "A, B"
    assert source.option_letters == ["A", "B"]
    assert sheet.rows[0]["ai_status"] == "unfixed"
    assert sheet.rows[0]["ai_reason"] == "En attente d'analyse IA"


def test_merge_out_of_range_indices_are_ignored():
    """Indices beyond the present options never produce letters."""
    _, sheet = loaded_sheet([["Question", "Option A", "Option B", "Réponse"], ["Quel organe", "foie", "rein", "A"]])
    source = extract_row(sheet, SheetKind.QCM, 0, canonical_columns(sheet.headers))
    result = AnalysisResult(
        id=source.item.id, status=ResultStatus.OK, correct_answers=[1, 1, 4], option_explanations=["a", "b"],
    )

    assert merge_result(source, result)
    assert sheet.rows[0]["Réponse"] == "B"


def test_append_explanation_is_not_duplicated():
    """Re-appending the same text leaves the cell unchanged."""
    _, sheet = loaded_sheet([["Question", "Explication"], ["Quel organe", "Auteur"]])
    source = extract_row(sheet, SheetKind.QROC, 0, canonical_columns(sheet.headers))

    append_explanation(source, "Le foie")
    append_explanation(source, "Le foie")

    assert sheet.rows[0]["Explication"] == "Auteur\n\nLe foie"


def test_answers_match_policies():
    """none always matches, exact and contains compare normalized text."""
    assert answers_match("glucagon", "Insuline", "none")
    assert answers_match("L'insuline", "insuline", "contains")
    assert answers_match("Insuline.", "insuline", "exact")
    assert not answers_match("glucagon", "insuline", "exact")
    assert not answers_match("", "insuline", "contains")
