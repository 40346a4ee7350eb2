"""
Row extraction: workbook rows to AnalyzableItems.

Every canonical row is stamped ai_status=unfixed before anything else
happens to it. Cell contents are never rewritten here; repairs (HTML
stripping, whitespace, CAS answer keys) only shape what is sent to the model.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config.constants import (
    AI_REASON_COLUMN, AI_STATUS_COLUMN, OPTION_LETTERS, PENDING_REASON, STATUS_UNFIXED,
)
from core.models import AnalyzableItem, ItemKind, SheetKind
from utils.text import (
    clean_qroc_answer_text, normalize_cas_response_letters, parse_answer_letters,
    parse_int, repair_option_text, repair_question_text,
)
from workbook.io import SheetRows

QUESTION_KEY = 'texte de la question'
CASE_TEXT_KEY = 'texte du cas'
ANSWER_KEY = 'reponse'
QUESTION_NUMBER_KEY = 'question n'


@dataclass
class SourceRow:
    """An extracted item and the row it must be merged back into."""
    item: AnalyzableItem
    sheet_name: str
    sheet_kind: SheetKind
    index: int                    # 0-based data row index
    row: Dict[str, Any]
    columns: Dict[str, str]       # canonical key -> original header
    option_letters: List[str]     # letter of each entry of item.options

    @property
    def row_number(self) -> int:
        """1-based spreadsheet row, header included."""
        return self.index + 2


def item_id(sheet_name: str, index: int) -> str:
    return f"{sheet_name}#{index + 2}"


def stamp_pending(row: Dict[str, Any]) -> None:
    row[AI_STATUS_COLUMN] = STATUS_UNFIXED
    row[AI_REASON_COLUMN] = PENDING_REASON


def _cell(row: Dict[str, Any], columns: Dict[str, str], key: str) -> str:
    header = columns.get(key)
    if header is None:
        return ""
    value = row.get(header)
    return "" if value is None else str(value)


def _question_text(row: Dict[str, Any], columns: Dict[str, str], kind: SheetKind) -> tuple[str, str]:
    text = repair_question_text(_cell(row, columns, QUESTION_KEY))
    case_text = _cell(row, columns, CASE_TEXT_KEY).strip()
    if kind.is_case and not text and case_text:
        text = repair_question_text(case_text)
    return text, case_text


def _mcq_item(
    sheet: SheetRows, kind: SheetKind, index: int, row: Dict[str, Any], columns: Dict[str, str]
) -> SourceRow:
    text, case_text = _question_text(row, columns, kind)

    options, letters = [], []
    for letter in OPTION_LETTERS:
        value = _cell(row, columns, f"option {letter.lower()}")
        if value.strip():
            options.append(repair_option_text(value))
            letters.append(letter)

    raw_answer = _cell(row, columns, ANSWER_KEY)
    answer_letters = parse_answer_letters(raw_answer)
    if kind == SheetKind.CAS_QCM:
        question_number = parse_int(_cell(row, columns, QUESTION_NUMBER_KEY))
        normalized = normalize_cas_response_letters(raw_answer, question_number)
        if normalized:
            answer_letters = parse_answer_letters(normalized)

    item = AnalyzableItem(
        id=item_id(sheet.name, index),
        kind=ItemKind.MCQ,
        question_text=text,
        options=options,
        provided_answer_raw=", ".join(answer_letters) or None,
        case_text=case_text or None,
    )
    return SourceRow(item, sheet.name, kind, index, row, columns, letters)


def _qroc_item(
    sheet: SheetRows, kind: SheetKind, index: int, row: Dict[str, Any], columns: Dict[str, str]
) -> SourceRow:
    text, case_text = _question_text(row, columns, kind)
    answer = clean_qroc_answer_text(_cell(row, columns, ANSWER_KEY))

    item = AnalyzableItem(
        id=item_id(sheet.name, index),
        kind=ItemKind.QROC,
        question_text=text,
        provided_answer_raw=answer or None,
        case_text=case_text or None,
    )
    return SourceRow(item, sheet.name, kind, index, row, columns, [])


def extract_row(
    sheet: SheetRows, kind: SheetKind, index: int, columns: Dict[str, str]
) -> Optional[SourceRow]:
    """
    Stamp one row and build its item.

    Returns None for rows without any question text; those stay unfixed
    with an explicit reason.
    """
    row = sheet.rows[index]
    stamp_pending(row)

    if kind.item_kind == ItemKind.MCQ:
        source = _mcq_item(sheet, kind, index, row, columns)
    else:
        source = _qroc_item(sheet, kind, index, row, columns)

    if not source.item.question_text:
        row[AI_REASON_COLUMN] = "Texte de la question manquant"
        return None
    return source
