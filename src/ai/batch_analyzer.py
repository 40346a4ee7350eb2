"""
Batch Analyzer - analyzes a bounded list of questions in one LLM call.

Architecture:
- One request per batch, payload fields capped in length
- Results mapped back to items by id, never by position
- Unparseable or empty batch responses degrade to per-item salvage calls
- Exactly one AnalysisResult per input item, in input order

Only infrastructure failures of the batch call itself (transport retries
exhausted, fatal configuration) are raised to the caller.
"""

import json
from typing import Any, Dict, List, Optional

from config.constants import MISSING_FROM_RESPONSE
from config.logging_config import get_logger
from config.settings import Settings, get_settings
from core.exceptions import ConfigurationError, ProviderError
from core.models import AnalysisResult, AnalyzableItem, ItemKind, ResultStatus
from utils.json_extractor import recover_json
from utils.text import cap

logger = get_logger(__name__)


def _coerce_indices(raw: Any) -> Optional[List[int]]:
    """Coerce correctAnswers to non-negative ints, dropping malformed entries."""
    if raw is None:
        return None
    if not isinstance(raw, list):
        raw = [raw]
    indices = []
    for value in raw:
        if isinstance(value, bool):
            continue
        try:
            index = int(value)
        except (TypeError, ValueError):
            continue
        if isinstance(value, float) and value != index:
            continue
        if index >= 0:
            indices.append(index)
    return indices


def _coerce_text(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def coerce_result(raw: Dict[str, Any], item_id: str) -> AnalysisResult:
    """
    Validate one untyped result object into an AnalysisResult.

    Invalid or missing fields become None instead of raising.
    """
    status = ResultStatus.ERROR if str(raw.get("status", "ok")).lower() == "error" else ResultStatus.OK

    explanations = raw.get("optionExplanations")
    option_explanations = (
        [str(e).strip() if e is not None else "" for e in explanations]
        if isinstance(explanations, list) else None
    )

    fixed = raw.get("fixedOptions")
    fixed_options = (
        [str(o).strip() if o is not None else "" for o in fixed]
        if isinstance(fixed, list) and fixed else None
    )

    error = _coerce_text(raw.get("error"))
    if status == ResultStatus.ERROR and not error:
        error = "Erreur signalée par l'IA sans détail"

    return AnalysisResult(
        id=item_id,
        status=status,
        correct_answers=_coerce_indices(raw.get("correctAnswers")),
        option_explanations=option_explanations,
        global_explanation=_coerce_text(raw.get("globalExplanation") or raw.get("explanation")),
        fixed_question_text=_coerce_text(raw.get("fixedQuestionText")),
        fixed_options=fixed_options,
        suggested_answer=_coerce_text(raw.get("expectedAnswer")),
        error=error if status == ResultStatus.ERROR else None,
    )


def _results_list(parsed: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not parsed:
        return []
    results = parsed.get("results")
    if not isinstance(results, list):
        return []
    return [r for r in results if isinstance(r, dict)]


class BatchAnalyzer:
    """
    Analyzes batches of AnalyzableItems through a transport client.

    The transport only needs an async `send(messages, max_tokens=...,
    system_prompt=...)` returning an object with a `content` attribute.
    """

    def __init__(self, transport, settings: Optional[Settings] = None):
        self.transport = transport
        self.settings = settings or get_settings()

    # ==================== PAYLOAD ====================

    def build_payload(self, items: List[AnalyzableItem]) -> str:
        """Serialize items into one user message, with capped field lengths."""
        kind = items[0].kind if items else ItemKind.MCQ
        q_cap = self.settings.question_char_cap

        if kind == ItemKind.QROC:
            return json.dumps({
                "task": "qroc_explanations",
                "items": [
                    {
                        "id": item.id,
                        "questionText": cap(item.question_text, q_cap),
                        "answerText": item.provided_answer_raw or "",
                        "caseText": cap(item.case_text, self.settings.case_char_cap),
                    }
                    for item in items
                ],
            }, ensure_ascii=False)

        return json.dumps({
            "task": "analyze_mcq_batch",
            "items": [
                {
                    "id": item.id,
                    "questionText": cap(item.question_text, q_cap),
                    "options": [cap(o, self.settings.option_char_cap) for o in item.options],
                    "providedAnswerRaw": item.provided_answer_raw or None,
                    **({"caseText": cap(item.case_text, self.settings.case_char_cap)} if item.case_text else {}),
                }
                for item in items
            ],
        }, ensure_ascii=False)

    def _max_tokens(self, items: List[AnalyzableItem]) -> int:
        if items and items[0].kind == ItemKind.QROC:
            return self.settings.qroc_max_tokens
        return self.settings.mcq_max_tokens

    async def _request(self, items: List[AnalyzableItem], system_prompt: str, max_tokens: int) -> Optional[Dict[str, Any]]:
        result = await self.transport.send(
            [{"role": "user", "content": self.build_payload(items)}],
            max_tokens=max_tokens,
            system_prompt=system_prompt,
        )
        return recover_json(result.content)

    # ==================== ANALYSIS ====================

    async def analyze(self, items: List[AnalyzableItem], system_prompt: str) -> List[AnalysisResult]:
        """
        Analyze one batch.

        Args:
            items: Batch of items (ids unique)
            system_prompt: Prompt for this item class

        Returns:
            One AnalysisResult per item, in input order

        Raises:
            ProviderError / ConfigurationError: the batch call itself failed
        """
        if not items:
            return []

        parsed = await self._request(items, system_prompt, self._max_tokens(items))
        raw_results = _results_list(parsed)

        if not raw_results:
            logger.warning(
                f"Batch of {len(items)} returned no usable results "
                f"({'unparseable' if parsed is None else 'empty results'}), salvaging per item"
            )
            return await self.salvage(items, system_prompt)

        by_id: Dict[str, Dict[str, Any]] = {}
        for raw in raw_results:
            raw_id = raw.get("id")
            if raw_id is None:
                continue
            by_id.setdefault(str(raw_id), raw)

        results = []
        missing = 0
        for item in items:
            raw = by_id.get(item.id)
            if raw is None:
                missing += 1
                results.append(AnalysisResult.failure(item.id, MISSING_FROM_RESPONSE))
            else:
                results.append(coerce_result(raw, item.id))

        if missing:
            logger.warning(f"{missing}/{len(items)} items missing from AI response")
        return results

    async def salvage(self, items: List[AnalyzableItem], system_prompt: str) -> List[AnalysisResult]:
        """
        Per-item fallback: one call per item, each recovered independently.

        A failed salvage call becomes an error result; only configuration
        errors propagate.
        """
        results = []
        for item in items:
            try:
                parsed = await self._request([item], system_prompt, self.settings.salvage_max_tokens)
            except ConfigurationError:
                raise
            except ProviderError as e:
                logger.warning(f"Salvage call failed for {item.id}: {e}")
                results.append(AnalysisResult.failure(item.id, f"Échec de l'analyse individuelle: {e.message}"))
                continue

            raw_results = _results_list(parsed)
            if not raw_results and parsed and ("status" in parsed or "correctAnswers" in parsed):
                raw_results = [parsed]  # bare result object without the envelope
            if not raw_results:
                results.append(AnalysisResult.failure(item.id, "Réponse IA illisible (analyse individuelle)"))
                continue

            # Single-item call: accept the only result even if the model mangled the id
            raw = next((r for r in raw_results if str(r.get("id")) == item.id), raw_results[0])
            results.append(coerce_result(raw, item.id))

        return results
