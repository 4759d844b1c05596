from __future__ import annotations

import logging
from typing import List

import numpy as np

from .config import OcrConfig
from .engine.base import CompiledModel, InferenceEngine, TensorBuffer
from .errors import TensorBufferError

logger = logging.getLogger(__name__)

# Decoder slots, in signature order.
HIDDEN_STATES_SLOT = 0
ATTENTION_MASK_SLOT = 1
EMBEDDING_WINDOW_SLOT = 2


class BufferPool:
    """
    Input/output buffers for both compiled models.

    Sizes are read from the compiled signatures, so a model rebuild with a
    different patch count needs no code change.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        encoder: CompiledModel,
        decoder: CompiledModel,
        encoder_inputs: List[TensorBuffer],
        encoder_outputs: List[TensorBuffer],
        decoder_inputs: List[TensorBuffer],
        decoder_outputs: List[TensorBuffer],
    ):
        self.engine = engine
        self.encoder = encoder
        self.decoder = decoder
        self.encoder_inputs = encoder_inputs
        self.encoder_outputs = encoder_outputs
        self.decoder_inputs = decoder_inputs
        self.decoder_outputs = decoder_outputs

    @classmethod
    def create(
        cls, engine: InferenceEngine, encoder: CompiledModel, decoder: CompiledModel
    ) -> "BufferPool":
        pool = cls(
            engine,
            encoder,
            decoder,
            engine.create_input_buffers(encoder),
            engine.create_output_buffers(encoder),
            engine.create_input_buffers(decoder),
            engine.create_output_buffers(decoder),
        )
        if not pool.encoder_inputs or not pool.encoder_outputs:
            raise TensorBufferError("encoder has no input or output slots", code="BUFFER_LAYOUT")
        if len(pool.decoder_inputs) < 3 or not pool.decoder_outputs:
            raise TensorBufferError(
                f"decoder needs 3 inputs and 1 output, has {len(pool.decoder_inputs)} "
                f"and {len(pool.decoder_outputs)}",
                code="BUFFER_LAYOUT",
            )
        logger.info(
            "[BUFFERS] Encoder has %d input + %d output buffers",
            len(pool.encoder_inputs),
            len(pool.encoder_outputs),
        )
        logger.info(
            "[BUFFERS] Decoder has %d input + %d output buffers",
            len(pool.decoder_inputs),
            len(pool.decoder_outputs),
        )
        return pool

    @property
    def image_input(self) -> TensorBuffer:
        return self.encoder_inputs[0]

    @property
    def hidden_output(self) -> TensorBuffer:
        return self.encoder_outputs[0]

    @property
    def logits_output(self) -> TensorBuffer:
        return self.decoder_outputs[0]

    @property
    def hidden_elements(self) -> int:
        return self.hidden_output.num_elements

    def validate(self, config: OcrConfig) -> None:
        """Check the fixed decoder tensor contract against the compiled signatures."""
        checks = [
            ("image input", self.image_input.num_elements, config.image_elements, False),
            (
                "decoder hidden states",
                self.decoder_inputs[HIDDEN_STATES_SLOT].num_elements,
                self.hidden_elements,
                False,
            ),
            (
                "attention mask",
                self.decoder_inputs[ATTENTION_MASK_SLOT].num_elements,
                config.max_sequence_length,
                False,
            ),
            (
                "embedding window",
                self.decoder_inputs[EMBEDDING_WINDOW_SLOT].num_elements,
                config.window_elements,
                False,
            ),
            ("logits", self.logits_output.num_elements, config.logits_elements, True),
        ]
        for label, got, expected, at_least in checks:
            if got < expected or (got != expected and not at_least):
                raise TensorBufferError(
                    f"{label} buffer holds {got} elements, model contract needs {expected}",
                    code="BUFFER_CONTRACT_MISMATCH",
                    detail={"slot": label, "expected": expected, "got": got},
                )

    def warmup(self) -> None:
        """
        One discarded encoder + decoder pass, so deferred device allocation and
        kernel compilation happen now instead of on the first request.
        """
        logger.info("Performing warmup inference...")
        self.image_input.write(np.zeros(self.image_input.num_elements, dtype=np.float32))
        self.engine.run(self.encoder, self.encoder_inputs, self.encoder_outputs)
        if self.hidden_output.read().size == 0:
            raise TensorBufferError("encoder output buffer is empty", code="WARMUP_EMPTY_OUTPUT")

        hidden = np.zeros(self.decoder_inputs[HIDDEN_STATES_SLOT].num_elements, dtype=np.float32)
        mask = np.zeros(self.decoder_inputs[ATTENTION_MASK_SLOT].num_elements, dtype=np.float32)
        mask[0] = 1.0
        window = np.zeros(self.decoder_inputs[EMBEDDING_WINDOW_SLOT].num_elements, dtype=np.float32)
        self.decoder_inputs[HIDDEN_STATES_SLOT].write(hidden)
        self.decoder_inputs[ATTENTION_MASK_SLOT].write(mask)
        self.decoder_inputs[EMBEDDING_WINDOW_SLOT].write(window)
        self.engine.run(self.decoder, self.decoder_inputs, self.decoder_outputs)
        logger.info("Warmup successful")

    def release(self) -> None:
        for group in (
            self.encoder_inputs,
            self.encoder_outputs,
            self.decoder_inputs,
            self.decoder_outputs,
        ):
            for buf in group:
                buf.release()
            group.clear()
