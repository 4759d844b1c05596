"""
Compile the encoder/decoder pair under the full-acceleration policy.

A model that compiles but leaves any part of its graph off the accelerator is
rejected outright. There is no mixed GPU/CPU mode: the host/device transfers
of a partial offload make latency unpredictable.
"""

from __future__ import annotations

import logging
from typing import Tuple

from .engine.base import Accelerator, CompiledModel, InferenceEngine
from .errors import AccelerationUnavailable

logger = logging.getLogger(__name__)


class AcceleratorCompiler:
    def __init__(self, engine: InferenceEngine, accelerator: Accelerator = Accelerator.GPU):
        self.engine = engine
        self.accelerator = accelerator
        # True once a GPU handle has been released here.
        self.released_device = False

    def _release(self, model: CompiledModel) -> None:
        self.released_device = self.released_device or model.accelerator is Accelerator.GPU
        self.engine.release(model)

    def compile(self, name: str, model_bytes: bytes) -> CompiledModel:
        tag = f"[{self.accelerator.name}-{name.upper()}]"
        logger.info("%s Compiling (%d bytes)...", tag, len(model_bytes))
        model = self.engine.compile(name, model_bytes, self.accelerator)
        try:
            fully = self.engine.is_fully_accelerated(model)
        except Exception as e:
            self._release(model)
            raise AccelerationUnavailable(
                f"failed to query acceleration status of {name}: {e}",
                code="ACCELERATION_QUERY_FAILED",
                detail={"model": name},
            ) from e
        logger.info("%s Fully accelerated: %s", tag, "YES" if fully else "NO (partial)")
        if not fully:
            self._release(model)
            logger.warning("%s Not fully accelerated; rejecting compilation", tag)
            raise AccelerationUnavailable(
                f"{name} is not fully accelerated on {self.accelerator.value}",
                code="PARTIAL_ACCELERATION",
                detail={"model": name, "accelerator": self.accelerator.value},
            )
        return model

    def compile_pair(
        self, encoder_bytes: bytes, decoder_bytes: bytes
    ) -> Tuple[CompiledModel, CompiledModel]:
        encoder = self.compile("encoder", encoder_bytes)
        try:
            decoder = self.compile("decoder", decoder_bytes)
        except Exception:
            self._release(encoder)
            raise
        logger.info("Both encoder and decoder are fully accelerated on %s", self.accelerator.value)
        return encoder, decoder
