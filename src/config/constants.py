"""
Constants and configuration values for the AI validation pipeline.

Defines defaults, limits, and system-wide constants.
"""

from typing import Final

# Azure OpenAI
DEFAULT_API_VERSION: Final[str] = "2024-08-01-preview"
DEFAULT_TIMEOUT_MS: Final[int] = 120000
API_CONNECT_TIMEOUT: Final[float] = 30.0
FORCED_JSON_INSTRUCTION: Final[str] = "Return a strict JSON object only. Reply in json. No prose."

# Token budgets
MCQ_MAX_TOKENS: Final[int] = 4000
QROC_MAX_TOKENS: Final[int] = 3000
SALVAGE_MAX_TOKENS: Final[int] = 1200
TRUNCATION_MAX_TOKENS: Final[int] = 16000  # Budget for the one retry after finish_reason=length

# Retry Configuration
MAX_RETRIES: Final[int] = 3
RETRY_BASE_DELAY: Final[float] = 1.0  # Base delay for exponential backoff (seconds)
RETRY_MAX_DELAY: Final[float] = 60.0
RETRYABLE_STATUS_CODES: Final[frozenset] = frozenset({500, 502, 503, 504})

# Batching Defaults
DEFAULT_BATCH_SIZE: Final[int] = 8
DEFAULT_CONCURRENCY: Final[int] = 4
DEFAULT_RETRY_BATCH_SIZE: Final[int] = 20
MAX_RETRY_BATCH_SIZE: Final[int] = 40
WAVE_COOLDOWN_SECONDS: Final[float] = 1.0
SHRINK_FACTOR: Final[float] = 0.5
MAX_SHRINK_ATTEMPTS: Final[int] = 3

# Payload caps (characters)
QUESTION_CHAR_CAP: Final[int] = 500
OPTION_CHAR_CAP: Final[int] = 140
CASE_CHAR_CAP: Final[int] = 1500

# Response recovery
MAX_BALANCING_CLOSERS: Final[int] = 10

# Workbook
CANONICAL_SHEETS: Final[tuple] = ("qcm", "cas_qcm", "qroc", "cas_qroc")
OPTION_LETTERS: Final[tuple] = ("A", "B", "C", "D", "E")
ERRORS_SHEET_NAME: Final[str] = "Erreurs"
ERRORS_SHEET_COLUMNS: Final[tuple] = ("sheet", "row", "reason", "question")
XLSX_MIME_TYPE: Final[str] = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
AI_STATUS_COLUMN: Final[str] = "ai_status"
AI_REASON_COLUMN: Final[str] = "ai_reason"
STATUS_FIXED: Final[str] = "fixed"
STATUS_UNFIXED: Final[str] = "unfixed"
EXPLANATION_COLUMN: Final[str] = "explication"

# Progress
EXTRACTION_PROGRESS_EVERY: Final[int] = 25  # Rows between progress pushes
EXTRACTION_PROGRESS_SHARE: Final[int] = 30  # Extraction covers 0-30%
DISPATCH_PROGRESS_END: Final[int] = 95      # Dispatch covers 30-95%

# Messages (user-visible, French like the rest of the UI)
MISSING_FROM_RESPONSE: Final[str] = "Missing from AI response"
PENDING_REASON: Final[str] = "En attente d'analyse IA"
OFFLINE_REASON: Final[str] = "IA non configurée: ligne non analysée"
JOB_FAILED_MESSAGE: Final[str] = "Échec du traitement IA"

# Storage
DATA_DIR: Final[str] = "data"
JOBS_DIR: Final[str] = "jobs"
