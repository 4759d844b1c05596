"""
Greedy autoregressive decode over the static-shape decoder graph.

The decoder sees the whole fixed-length window on every step: encoder hidden
states, a 0/1 attention mask and the flattened token embeddings. Logits come
back for every position; the row at `position - 1` picks the next token.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, List

import numpy as np

from .buffers import ATTENTION_MASK_SLOT, EMBEDDING_WINDOW_SLOT, HIDDEN_STATES_SLOT, BufferPool
from .config import OcrConfig
from .embeddings import EmbeddingTable
from .engine.base import InferenceEngine
from .errors import ErrorKind, ErrorRecord, OcrError

logger = logging.getLogger(__name__)


class DecodeStatus(str, enum.Enum):
    INIT = "init"
    ENCODING = "encoding"
    DECODING = "decoding"
    DONE = "done"
    TRUNCATED = "truncated"
    FAILED = "failed"


@dataclass
class DecodeState:
    token_ids: np.ndarray
    embedding_window: np.ndarray
    attention_mask: np.ndarray
    position: int = 0

    @classmethod
    def allocate(cls, config: OcrConfig) -> "DecodeState":
        return cls(
            token_ids=np.full(config.max_sequence_length, config.pad_token, dtype=np.int64),
            embedding_window=np.zeros(
                (config.max_sequence_length, config.hidden_size), dtype=np.float32
            ),
            attention_mask=np.zeros(config.max_sequence_length, dtype=np.float32),
        )

    @property
    def capacity(self) -> int:
        return int(self.token_ids.shape[0])

    def reset(self, start_token: int, start_embedding: np.ndarray, pad_token: int) -> None:
        self.token_ids.fill(pad_token)
        self.embedding_window.fill(0.0)
        self.attention_mask.fill(0.0)
        self.position = 0
        self.push(start_token, start_embedding)

    def push(self, token_id: int, embedding: np.ndarray) -> None:
        if self.position >= self.capacity:
            raise IndexError("decode window is full")
        self.token_ids[self.position] = token_id
        self.embedding_window[self.position, :] = embedding
        self.attention_mask[self.position] = 1.0
        self.position += 1

    def tokens(self) -> List[int]:
        return [int(t) for t in self.token_ids[: self.position]]


@dataclass
class DecodeResult:
    tokens: List[int]
    status: DecodeStatus
    steps: int = 0
    encoder_ms: float = 0.0
    decoder_ms: float = 0.0
    errors: List[ErrorRecord] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status in (DecodeStatus.DONE, DecodeStatus.TRUNCATED)


def greedy_token(row: np.ndarray, default: int) -> int:
    """
    Index of the largest logit under strict `>`: the first maximum wins ties,
    NaN never wins, and a row with no finite winner yields `default`.
    """
    clean = np.where(np.isnan(row), -np.inf, row)
    idx = int(np.argmax(clean))
    return idx if clean[idx] > -np.inf else default


class DecodeEngine:
    def __init__(
        self,
        engine: InferenceEngine,
        buffers: BufferPool,
        embeddings: EmbeddingTable,
        config: OcrConfig,
        using_gpu: bool = False,
    ):
        self.engine = engine
        self.buffers = buffers
        self.embeddings = embeddings
        self.config = config
        self.using_gpu = using_gpu
        self.state = DecodeState.allocate(config)
        self.status = DecodeStatus.INIT

    def infer(self, image_tensor: Any, max_tokens: int) -> DecodeResult:
        try:
            return self._infer(image_tensor, max_tokens)
        except Exception as e:
            logger.exception("Unexpected failure during inference")
            self.status = DecodeStatus.FAILED
            tokens = self.state.tokens() if self.state.position > 0 else []
            return DecodeResult(
                tokens=tokens,
                status=DecodeStatus.FAILED,
                errors=[ErrorRecord.unexpected(e, "INFER_UNEXPECTED")],
            )

    def _encode(self, image_tensor: Any) -> np.ndarray:
        pool = self.buffers
        pool.image_input.write(image_tensor)
        self.engine.run(pool.encoder, pool.encoder_inputs, pool.encoder_outputs)
        return pool.hidden_output.read()

    def _infer(self, image_tensor: Any, max_tokens: int) -> DecodeResult:
        cfg = self.config
        pool = self.buffers
        state = self.state
        state.position = 0
        self.status = DecodeStatus.ENCODING

        t0 = time.perf_counter()
        try:
            hidden = self._encode(image_tensor)
        except OcrError as e:
            logger.error("Encoder stage failed: %s", e)
            self.status = DecodeStatus.FAILED
            return DecodeResult(tokens=[], status=DecodeStatus.FAILED, errors=[e.to_record()])
        encoder_ms = (time.perf_counter() - t0) * 1000.0
        logger.info("[PERF] Encoder invocation took %.1f ms", encoder_ms)
        if self.using_gpu and encoder_ms >= cfg.latency_budget_ms:
            logger.warning(
                "[PERF] Encoder invocation exceeded %.0f ms budget", cfg.latency_budget_ms
            )

        state.reset(cfg.start_token, self.embeddings[cfg.start_token], cfg.pad_token)
        limit = min(max(1, int(max_tokens)), cfg.max_sequence_length)
        vocab_limit = min(cfg.vocab_size, self.embeddings.vocab_size)
        row_width = cfg.vocab_size

        status = DecodeStatus.DECODING
        self.status = status
        errors: List[ErrorRecord] = []
        decoder_ms = 0.0
        steps = 0
        if state.position >= limit:
            status = DecodeStatus.TRUNCATED

        inputs = pool.decoder_inputs
        while status is DecodeStatus.DECODING and steps < cfg.max_sequence_length - 1:
            try:
                inputs[HIDDEN_STATES_SLOT].write(hidden)
                inputs[ATTENTION_MASK_SLOT].write(state.attention_mask)
                inputs[EMBEDDING_WINDOW_SLOT].write(state.embedding_window)
                t1 = time.perf_counter()
                self.engine.run(pool.decoder, inputs, pool.decoder_outputs)
                decoder_ms += (time.perf_counter() - t1) * 1000.0
                steps += 1
                logits = pool.logits_output.read()
            except OcrError as e:
                logger.error("Decoder failed at step %d: %s", steps, e)
                errors.append(e.to_record())
                status = DecodeStatus.FAILED
                break

            offset = (state.position - 1) * row_width
            row = logits[offset : offset + row_width]
            if row.size != row_width:
                logger.error("Logits buffer too small: need %d, got %d", offset + row_width, logits.size)
                errors.append(
                    ErrorRecord(
                        kind=ErrorKind.BUFFER,
                        code="LOGITS_TOO_SMALL",
                        message=f"need {offset + row_width} logits, got {logits.size}",
                    )
                )
                status = DecodeStatus.FAILED
                break

            next_token = greedy_token(row, cfg.pad_token)
            if next_token == cfg.end_token:
                logger.debug("Reached END token at step %d", steps - 1)
                status = DecodeStatus.DONE
                break
            if not 0 <= next_token < vocab_limit:
                logger.error("Invalid token %d at step %d", next_token, steps - 1)
                errors.append(
                    ErrorRecord(
                        kind=ErrorKind.RUNTIME,
                        code="INVALID_TOKEN",
                        message=f"token {next_token} outside vocabulary of {vocab_limit}",
                    )
                )
                status = DecodeStatus.FAILED
                break

            state.push(next_token, self.embeddings[next_token])
            if state.position >= limit:
                logger.debug("Reached maximum token count: %d", state.position)
                status = DecodeStatus.TRUNCATED
        if status is DecodeStatus.DECODING:
            status = DecodeStatus.TRUNCATED

        logger.info(
            "[PERF] Decoder cumulative runtime: %.1f ms across %d steps", decoder_ms, steps
        )
        if self.using_gpu and decoder_ms >= cfg.latency_budget_ms:
            logger.warning(
                "[PERF] Decoder cumulative runtime exceeded %.0f ms budget", cfg.latency_budget_ms
            )
        self.status = status
        tokens = state.tokens()
        logger.info("Decoder finished with %d tokens (%s)", len(tokens), status.value)
        return DecodeResult(
            tokens=tokens,
            status=status,
            steps=steps,
            encoder_ms=encoder_ms,
            decoder_ms=decoder_ms,
            errors=errors,
        )
