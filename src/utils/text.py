"""
Text helpers for question workbooks.

Header canonicalization, sheet classification, answer letters and the
light repairs applied to question text before it is sent to the model.
"""

import re
import unicodedata
from typing import Iterable, List, Optional

from config.constants import OPTION_LETTERS
from core.models import SheetKind

# Normalized header -> canonical key
HEADER_SYNONYMS = {
    'matiere': 'matiere',
    'cours': 'cours',
    'texte de la question': 'texte de la question',
    'texte question': 'texte de la question',
    'texte de question': 'texte de la question',
    'question': 'texte de la question',
    'option a': 'option a',
    'option b': 'option b',
    'option c': 'option c',
    'option d': 'option d',
    'option e': 'option e',
    'reponse': 'reponse',
    'reponses': 'reponse',
    'reponse s': 'reponse',
    'source': 'source',
    'cas n': 'cas n',
    'cas no': 'cas n',
    'texte du cas': 'texte du cas',
    'texte cas': 'texte du cas',
    'question n': 'question n',
    'question no': 'question n',
    'explication': 'explication',
    'explications': 'explication',
    'niveau': 'niveau',
    'semestre': 'semestre',
}

_SHEET_ALIASES = {
    'qcm': SheetKind.QCM,
    'cas_qcm': SheetKind.CAS_QCM,
    'casqcm': SheetKind.CAS_QCM,
    'qroc': SheetKind.QROC,
    'cas_qroc': SheetKind.CAS_QROC,
    'casqroc': SheetKind.CAS_QROC,
}

_INTERROGATIVE_RE = re.compile(
    r"\b(quelle|quels|quelles|quel|lequel|laquelle|lesquels|lesquelles|pourquoi|comment|quand|ou|combien)\b",
    re.IGNORECASE,
)
_HTML_ENTITIES = {
    '&nbsp;': ' ',
    '&amp;': '&',
    '&lt;': '<',
    '&gt;': '>',
    '&quot;': '"',
    '&#39;': "'",
}


def strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize('NFD', value)
    return ''.join(ch for ch in decomposed if unicodedata.category(ch) != 'Mn')


def normalize_header(header) -> str:
    """Lowercase, strip diacritics, collapse every non-alphanumeric run to one space."""
    text = strip_accents(str(header or '')).lower()
    return re.sub(r'[^a-z0-9]+', ' ', text).strip()


def canonicalize_header(header) -> str:
    """
    Map a column header to its canonical key.

    "Texte de la Question", "texte_question" and "Texte Question" all map
    to "texte de la question". Unknown headers map to their normalized form.
    """
    normalized = normalize_header(header)
    return HEADER_SYNONYMS.get(normalized, normalized)


def canonical_columns(headers: Iterable[str]) -> dict:
    """Canonical key -> first original header carrying it."""
    columns = {}
    for header in headers:
        key = canonicalize_header(header)
        if key not in columns:
            columns[key] = header
    return columns


def sheet_key(name) -> Optional[SheetKind]:
    """
    Classify a sheet name, case and whitespace insensitive.

    Returns None for sheets that are passed through untouched.
    """
    normalized = re.sub(r'\s+', '_', str(name or '').strip().lower())
    normalized = re.sub(r'__+', '_', normalized)
    return _SHEET_ALIASES.get(normalized) or _SHEET_ALIASES.get(normalized.strip('_'))


def parse_answer_letters(raw) -> List[str]:
    """Split "A, C" / "a;c" / "A C" into ["A", "C"], keeping letters A-E only."""
    if raw is None:
        return []
    tokens = re.split(r'[;,\s]+', str(raw).upper())
    return [t for t in tokens if t in OPTION_LETTERS]


def normalize_cas_response_letters(raw, question_number: Optional[int]) -> Optional[str]:
    """
    Pick the current question's letters out of a clinical-case answer key.

    "1AB, 2E, 3B" with question_number=2 -> "E". Returns None when the
    value is not in that numbered form or has no entry for the question.
    """
    if not raw or not question_number:
        return None
    text = re.sub(r'\s+', ' ', str(raw).upper()).strip()
    if not re.search(r'\d\s*[A-E]+', text):
        return None

    letters_by_number = {}
    for part in re.split(r'[;,]+', text):
        match = re.match(r'^(\d+)\s*([A-E]+)', part.strip())
        if match:
            letters_by_number[int(match.group(1))] = ', '.join(match.group(2))
    return letters_by_number.get(question_number)


def parse_int(value) -> Optional[int]:
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return None


def html_strip(value) -> str:
    """Drop HTML tags and decode the few entities exports commonly contain."""
    text = re.sub(r'<[^>]+>', ' ', str(value or ''))
    for entity, replacement in _HTML_ENTITIES.items():
        text = re.sub(re.escape(entity), replacement, text, flags=re.IGNORECASE)
    return text


def normalize_whitespace(value) -> str:
    return re.sub(r'\s+', ' ', str(value or '')).strip()


def repair_question_text(value) -> str:
    """Strip HTML, straighten quotes, collapse spaces, add " ?" to unpunctuated questions."""
    text = html_strip(value)
    text = text.replace('“', '"').replace('”', '"').replace('’', "'")
    text = normalize_whitespace(text)
    if _INTERROGATIVE_RE.search(text) and not re.search(r'[?!.]$', text):
        text = text + ' ?'
    return text


def repair_option_text(value) -> str:
    return normalize_whitespace(html_strip(value))


def clean_qroc_answer_text(value) -> str:
    """Remove a leading "Réponse:" label, HTML and extra spaces."""
    text = re.sub(r'^\s*(r[ée]ponse)\s*:?\s*', '', str(value or ''), flags=re.IGNORECASE)
    return normalize_whitespace(html_strip(text))


def cap(value: Optional[str], limit: int) -> Optional[str]:
    if value is None or limit <= 0 or len(value) <= limit:
        return value
    return value[:limit]
