from __future__ import annotations

from functools import lru_cache
from typing import Callable, Iterable, List, Optional

import tiktoken

TokenCounter = Callable[[str], int]
_TOKEN_COUNTER: Optional[TokenCounter] = None
_DEFAULT_ENCODING = "cl100k_base"


def build_token_counter(model_hint: Optional[str]) -> TokenCounter:
    """Return a tiktoken-backed counter for ``model_hint``, or the character heuristic."""
    encoding = _resolve_encoding(model_hint or "")
    if encoding is None:
        return heuristic_tokens

    def _count(text: str) -> int:
        if not text:
            return 1
        return max(1, len(encoding.encode_ordinary(text)))

    return _count


def configure_token_counter(counter: Optional[TokenCounter]) -> None:
    global _TOKEN_COUNTER
    _TOKEN_COUNTER = counter


def estimate_tokens(text: str) -> int:
    counter = _TOKEN_COUNTER or heuristic_tokens
    return max(1, counter(text))


def completion_budget(texts: Iterable[str], ceiling: Optional[int], multiplier: float = 1.6) -> int:
    """Token allowance for a reply that rewrites ``texts`` and wraps them in JSON."""
    estimated = sum(estimate_tokens(text) for text in texts)
    target = max(256, int(estimated * multiplier) + 128)
    if ceiling and ceiling > 0:
        return min(ceiling, target)
    return target


def heuristic_tokens(text: str) -> int:
    if not text:
        return 1
    ascii_chars = sum(1 for char in text if char.isascii())
    other_chars = len(text) - ascii_chars
    estimate = (ascii_chars + 3) // 4
    if other_chars:
        estimate += other_chars + max(1, other_chars // 5)
    return max(1, estimate)


@lru_cache(maxsize=8)
def _resolve_encoding(model_hint: str):
    # Encodings are downloaded on first use; an offline machine raises OSError here.
    try:
        for candidate in _model_hint_candidates(model_hint):
            try:
                return tiktoken.encoding_for_model(candidate)
            except KeyError:
                continue
        return tiktoken.get_encoding(_DEFAULT_ENCODING)
    except (ValueError, OSError):
        return None


def _model_hint_candidates(model_hint: str) -> List[str]:
    raw = model_hint.strip().lower()
    if not raw:
        return []
    candidates = [raw]
    if "/" in raw:
        candidates.append(raw.rsplit("/", 1)[-1])
    if ":" in raw:
        candidates.append(raw.split(":", 1)[0])
    return candidates
