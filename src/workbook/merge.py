"""
Folding analysis results back into workbook rows.

On success the answer column is overwritten, MCQ question and option
cells take the model's repaired wording when it differs, and AI explanation
text is appended to the explanation column, never replacing what authors wrote.
On error the row content is left untouched and only ai_reason changes.
"""

import re
from typing import Any, Dict, List, Optional

from config.constants import (
    AI_REASON_COLUMN, AI_STATUS_COLUMN, EXPLANATION_COLUMN, STATUS_FIXED, STATUS_UNFIXED,
)
from core.models import AnalysisResult, ItemKind
from utils.text import normalize_whitespace, repair_option_text, repair_question_text, strip_accents
from workbook.extraction import ANSWER_KEY, QUESTION_KEY, SourceRow
from workbook.io import SheetRows


def _mark(row: Dict[str, Any], fixed: bool, reason: str = "") -> bool:
    row[AI_STATUS_COLUMN] = STATUS_FIXED if fixed else STATUS_UNFIXED
    row[AI_REASON_COLUMN] = reason
    return fixed


def append_explanation(source: SourceRow, text: str) -> None:
    """Append to the explanation column (created when absent)."""
    header = source.columns.get(EXPLANATION_COLUMN, EXPLANATION_COLUMN)
    existing = str(source.row.get(header) or "").strip()
    if not text or text in existing:
        return
    source.row[header] = f"{existing}\n\n{text}" if existing else text


def mcq_explanation_text(source: SourceRow, result: AnalysisResult) -> str:
    lines = []
    if result.global_explanation:
        lines.append(result.global_explanation)
    for letter, explanation in zip(source.option_letters, result.option_explanations or []):
        if explanation and explanation.strip():
            lines.append(f"{letter}. {explanation.strip()}")
    return "\n".join(lines)


def missing_option_explanations(source: SourceRow, result: AnalysisResult) -> List[str]:
    """Letters of present options the model did not explain."""
    explanations = result.option_explanations or []
    return [
        letter for i, letter in enumerate(source.option_letters)
        if i >= len(explanations) or not explanations[i].strip()
    ]


def apply_fixed_text(source: SourceRow, result: AnalysisResult) -> bool:
    """
    Write the model's repaired question and option text into the row.

    fixed_options follow the order of the options sent, so each entry maps
    to the letter of a present option. Returns True when a cell changed.
    """
    changed = False
    if result.fixed_question_text:
        header = source.columns.get(QUESTION_KEY, QUESTION_KEY)
        fixed = repair_question_text(result.fixed_question_text)
        if fixed and fixed != str(source.row.get(header) or "").strip():
            source.row[header] = fixed
            changed = True

    for letter, raw in zip(source.option_letters, result.fixed_options or []):
        header = source.columns.get(f"option {letter.lower()}")
        fixed = repair_option_text(raw)
        if header and fixed and fixed != str(source.row.get(header) or "").strip():
            source.row[header] = fixed
            changed = True
    return changed


def _normalize_answer(value: str) -> str:
    text = strip_accents(normalize_whitespace(value)).lower()
    return re.sub(r'[^\w\s]', '', text).strip()


def answers_match(provided: str, expected: str, policy: str) -> bool:
    """
    Compare a QROC answer with the model's expected answer.

    Policies: "none" (always true), "exact" (after normalization),
    "contains" (either contains the other, after normalization).
    """
    if policy == "none":
        return True
    a, b = _normalize_answer(provided), _normalize_answer(expected)
    if not a or not b:
        return False
    if policy == "exact":
        return a == b
    return a in b or b in a


def _merge_mcq(source: SourceRow, result: AnalysisResult, require_option_explanations: bool) -> bool:
    apply_fixed_text(source, result)

    indices = sorted({i for i in (result.correct_answers or []) if i < len(source.option_letters)})
    if indices:
        header = source.columns.get(ANSWER_KEY, ANSWER_KEY)
        source.row[header] = ", ".join(source.option_letters[i] for i in indices)

    append_explanation(source, mcq_explanation_text(source, result))

    missing = missing_option_explanations(source, result)
    if require_option_explanations and missing:
        return _mark(source.row, False, f"Explication par option manquante: {', '.join(missing)}")
    return _mark(source.row, True)


def _merge_qroc(source: SourceRow, result: AnalysisResult, match_policy: str) -> bool:
    if not result.global_explanation:
        return _mark(source.row, False, "Explication IA manquante")

    append_explanation(source, result.global_explanation)

    provided = source.item.provided_answer_raw or ""
    if result.suggested_answer and not answers_match(provided, result.suggested_answer, match_policy):
        return _mark(source.row, False, f"Réponse à vérifier (attendu: {result.suggested_answer})")
    return _mark(source.row, True)


def merge_result(
    source: SourceRow,
    result: AnalysisResult,
    require_option_explanations: bool = True,
    match_policy: str = "none",
) -> bool:
    """
    Apply one result to its row.

    Returns:
        True when the row ends up ai_status=fixed
    """
    if not result.is_ok:
        return _mark(source.row, False, result.error or "Erreur IA")
    if source.item.kind == ItemKind.MCQ:
        return _merge_mcq(source, result, require_option_explanations)
    return _merge_qroc(source, result, match_policy)


def build_error_rows(sheets: List[SheetRows], columns_by_sheet: Dict[str, Dict[str, str]]) -> List[Dict[str, Any]]:
    """One Erreurs line per canonical row that is not fixed."""
    error_rows = []
    for sheet in sheets:
        question_header: Optional[str] = columns_by_sheet.get(sheet.name, {}).get(QUESTION_KEY)
        for index, row in enumerate(sheet.rows):
            if str(row.get(AI_STATUS_COLUMN, "")).lower() == STATUS_FIXED:
                continue
            error_rows.append({
                "sheet": sheet.name,
                "row": index + 2,
                "reason": str(row.get(AI_REASON_COLUMN) or "Non corrigé"),
                "question": row.get(question_header, "") if question_header else "",
            })
    return error_rows
