"""Runtime configuration for the static encoder/decoder OCR models."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from .errors import ConfigurationError

IMAGE_SIZE = 224
MAX_SEQUENCE_LENGTH = 300
VOCAB_SIZE = 6144  # what the decoder emits; the shipped vocab list is 6142 long
HIDDEN_SIZE = 768
START_TOKEN = 2
END_TOKEN = 3
PAD_TOKEN = 0
SPECIAL_TOKEN_THRESHOLD = 5

GPU_LATENCY_BUDGET_MS = 500
RELEASE_PAUSE_S = 0.1

_FIELD_TYPES = {"int": int, "float": (int, float), "bool": bool, "str": str}


@dataclass(frozen=True)
class OcrConfig:
    image_size: int = IMAGE_SIZE
    max_sequence_length: int = MAX_SEQUENCE_LENGTH
    vocab_size: int = VOCAB_SIZE
    hidden_size: int = HIDDEN_SIZE
    start_token: int = START_TOKEN
    end_token: int = END_TOKEN
    pad_token: int = PAD_TOKEN
    special_token_threshold: int = SPECIAL_TOKEN_THRESHOLD

    # "gpu" is the only preference the compiler accepts for production use.
    accelerator: str = "gpu"
    cuda_ep_tuned: bool = True

    channels_first: bool = False
    normalization_mean: float = 0.5
    normalization_std: float = 0.5

    latency_budget_ms: float = GPU_LATENCY_BUDGET_MS
    release_pause_s: float = RELEASE_PAUSE_S

    def __post_init__(self) -> None:
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            expected = _FIELD_TYPES[f.type]
            # bool is an int subclass; only bool fields accept it.
            if isinstance(value, bool) is not (f.type == "bool") or not isinstance(value, expected):
                raise ConfigurationError(
                    f"{f.name} must be {f.type}, got {type(value).__name__} {value!r}"
                )
        for name in ("image_size", "max_sequence_length", "vocab_size", "hidden_size"):
            if int(getattr(self, name)) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.max_sequence_length < 2:
            raise ConfigurationError("max_sequence_length must leave room for one generated token.")
        for name in ("start_token", "end_token", "pad_token"):
            tid = int(getattr(self, name))
            if not 0 <= tid < self.vocab_size:
                raise ConfigurationError(f"{name}={tid} is outside vocab_size={self.vocab_size}")
        if self.normalization_std == 0:
            raise ConfigurationError("normalization_std must be non-zero.")
        if self.accelerator not in {"gpu", "cpu"}:
            raise ConfigurationError("accelerator must be gpu or cpu")

    @property
    def image_elements(self) -> int:
        return self.image_size * self.image_size * 3

    @property
    def window_elements(self) -> int:
        return self.max_sequence_length * self.hidden_size

    @property
    def logits_elements(self) -> int:
        return self.max_sequence_length * self.vocab_size

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "OcrConfig":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(k for k in values if k not in known)
        if unknown:
            raise ConfigurationError(f"Unknown config key(s): {', '.join(unknown)}")
        return cls(**dict(values))

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)
