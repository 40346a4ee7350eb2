"""
JSON recovery for LLM responses.

Models asked for strict JSON still return prose, code fences, truncated
objects and trailing commas. recover_json() runs a cascade of strategies,
each on the original text, and returns the first dict that parses.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional

from config.constants import MAX_BALANCING_CLOSERS

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?[^\n]*\n(.*?)```", re.DOTALL)
_RESULTS_START_RE = re.compile(r'\{\s*"results"')
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_RESULTS_FRAGMENT_RE = re.compile(r'"results"\s*:\s*\[([^\]]*)')


def _loads(text: str) -> Optional[Dict[str, Any]]:
    """Parse text; lists are wrapped as a results envelope, other scalars rejected."""
    if not text:
        return None
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    if isinstance(value, dict):
        return value
    if isinstance(value, list):
        return {"results": value}
    return None


def _object_start(text: str) -> int:
    match = _RESULTS_START_RE.search(text)
    if match:
        return match.start()
    return text.find('{')


def _strategy_direct(text: str) -> Optional[Dict[str, Any]]:
    return _loads(text.strip())


def _strategy_fenced(text: str) -> Optional[Dict[str, Any]]:
    match = _FENCE_RE.search(text)
    if not match:
        return None
    return _loads(match.group(1).strip())


def _strategy_from_start(text: str) -> Optional[Dict[str, Any]]:
    start = _object_start(text)
    if start < 0:
        return None
    return _loads(text[start:].strip())


def _strategy_slice_to_last_closer(text: str) -> Optional[Dict[str, Any]]:
    start = _object_start(text)
    if start < 0:
        return None
    end = max(text.rfind('}'), text.rfind(']'))
    if end <= start:
        return None
    return _loads(text[start:end + 1])


def _missing_closers(fragment: str) -> Optional[str]:
    """
    Closing characters needed to balance fragment, innermost first.

    Brackets inside string literals are ignored. Returns None when the
    fragment has a stray closer or needs more than the allowed closers.
    """
    stack: List[str] = []
    in_string = False
    escaped = False
    for char in fragment:
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in '{[':
            stack.append('}' if char == '{' else ']')
        elif char in '}]':
            if not stack or stack[-1] != char:
                return None
            stack.pop()

    closers = ''.join(reversed(stack))
    if closers.count('}') > MAX_BALANCING_CLOSERS or closers.count(']') > MAX_BALANCING_CLOSERS:
        return None
    return ('"' if in_string else '') + closers


def _strategy_balance(text: str) -> Optional[Dict[str, Any]]:
    start = _object_start(text)
    if start < 0:
        return None
    fragment = text[start:].rstrip()
    # A truncated fragment often ends mid-element; cut back to the last separator.
    candidates = [fragment]
    for sep in (',', '}', ']'):
        cut = fragment.rfind(sep)
        if cut > 0:
            candidates.append(fragment[:cut] if sep == ',' else fragment[:cut + 1])
    for candidate in candidates:
        closers = _missing_closers(candidate)
        if closers is None:
            continue
        parsed = _loads(_TRAILING_COMMA_RE.sub(r'\1', candidate + closers))
        if parsed is not None:
            return parsed
    return None


def _strategy_trailing_commas(text: str) -> Optional[Dict[str, Any]]:
    start = _object_start(text)
    if start < 0:
        return None
    end = max(text.rfind('}'), text.rfind(']'))
    body = text[start:end + 1] if end > start else text[start:]
    return _loads(_TRAILING_COMMA_RE.sub(r'\1', body))


def _strategy_results_fragment(text: str) -> Optional[Dict[str, Any]]:
    match = _RESULTS_FRAGMENT_RE.search(text)
    if not match:
        return None
    inner = _TRAILING_COMMA_RE.sub(r'\1', match.group(1).strip().rstrip(','))
    parsed = _loads('{"results":[' + inner + ']}')
    if parsed is not None:
        return parsed
    # Keep only the complete objects of a cut-off array.
    last = inner.rfind('}')
    if last < 0:
        return None
    return _loads('{"results":[' + inner[:last + 1] + ']}')


_STRATEGIES: List[Callable[[str], Optional[Dict[str, Any]]]] = [
    _strategy_direct,
    _strategy_fenced,
    _strategy_from_start,
    _strategy_slice_to_last_closer,
    _strategy_balance,
    _strategy_trailing_commas,
    _strategy_results_fragment,
]


def recover_json(raw_text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Recover a JSON object from an LLM response.

    Strategies, in order, each applied to the original text:
    - direct parse
    - fenced ```json block
    - from {"results" (or the first {) to the end
    - from there to the last } or ]
    - balance unmatched { and [ (at most 10 closers of each)
    - strip trailing commas
    - wrap a partial "results": [ ... fragment into {"results": [...]}

    Args:
        raw_text: The raw text response from an LLM

    Returns:
        Parsed JSON dictionary, or None if every strategy fails
    """
    if not raw_text or not raw_text.strip():
        return None

    for strategy in _STRATEGIES:
        result = strategy(raw_text)
        if result is not None:
            if strategy is not _strategy_direct:
                logger.debug(f"JSON recovered with {strategy.__name__}")
            return result

    logger.debug(f"JSON recovery failed for response of {len(raw_text)} chars")
    return None
