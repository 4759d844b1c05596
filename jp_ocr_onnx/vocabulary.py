from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence, Tuple, Union

from .config import SPECIAL_TOKEN_THRESHOLD
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class Vocabulary:
    """Token id -> text fragment. Fragments are pre-segmented, so decoding is plain concatenation."""

    def __init__(self, fragments: Iterable[str]):
        self._fragments: Tuple[str, ...] = tuple(fragments)
        if not self._fragments:
            raise ConfigurationError("vocabulary is empty")

    def __len__(self) -> int:
        return len(self._fragments)

    def __getitem__(self, token_id: int) -> str:
        return self._fragments[token_id]

    def __contains__(self, token_id: object) -> bool:
        return isinstance(token_id, int) and 0 <= token_id < len(self._fragments)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Vocabulary":
        """One fragment per line, UTF-8; line number is the token id."""
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"cannot read vocabulary {path}: {e}") from e
        lines = text.split("\n")
        if lines and lines[-1] == "":
            lines.pop()
        return cls(line.rstrip("\r") for line in lines)

    @classmethod
    def from_pretrained(cls, model_id: str) -> "Vocabulary":
        from transformers import AutoTokenizer

        tokenizer = AutoTokenizer.from_pretrained(model_id)
        tokens = tokenizer.convert_ids_to_tokens(list(range(len(tokenizer))))
        # Word-piece continuation markers carry no text of their own.
        return cls(t[2:] if t.startswith("##") and len(t) > 2 else t for t in tokens)

    def to_text(self) -> str:
        # One line per id; a line break inside a fragment would shift every later id.
        bad = [i for i, f in enumerate(self._fragments) if "\n" in f or "\r" in f]
        if bad:
            raise ConfigurationError(
                f"cannot save vocabulary: fragment(s) {bad[:5]} contain a line break"
            )
        return "".join(f"{f}\n" for f in self._fragments)

    def save(self, path: Union[str, Path]) -> None:
        Path(path).write_text(self.to_text(), encoding="utf-8")


class TokenVocabularyDecoder:
    def __init__(self, vocabulary: Vocabulary, special_token_threshold: int = SPECIAL_TOKEN_THRESHOLD):
        self.vocabulary = vocabulary
        self.special_token_threshold = special_token_threshold

    def decode_tokens(self, token_ids: Sequence[int]) -> str:
        parts = []
        size = len(self.vocabulary)
        for tid in token_ids:
            tid = int(tid)
            if tid < self.special_token_threshold:
                continue
            if tid >= size:
                logger.debug("Token %d outside vocabulary range %d", tid, size)
                continue
            parts.append(self.vocabulary[tid])
        return "".join(parts)
