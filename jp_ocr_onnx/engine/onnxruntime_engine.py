"""
ONNX Runtime adapter for the OCR inference-engine interface.

GPU compilation uses CUDAExecutionProvider only and sets
`session.disable_cpu_ep_fallback`, so session creation fails instead of
silently placing unsupported nodes on the CPU partition.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import onnxruntime as ort

from ..errors import AccelerationUnavailable, EngineRunError, TensorBufferError
from .base import Accelerator, CompiledModel, InferenceEngine, TensorBuffer

logger = logging.getLogger(__name__)

if hasattr(ort, "set_default_logger_severity"):
    ort.set_default_logger_severity(3)

CUDA_PROVIDER = "CUDAExecutionProvider"
CPU_PROVIDER = "CPUExecutionProvider"

ORT_TO_NUMPY = {
    "tensor(float)": np.float32,
    "tensor(float16)": np.float16,
    "tensor(double)": np.float64,
    "tensor(int64)": np.int64,
    "tensor(int32)": np.int32,
    "tensor(int8)": np.int8,
    "tensor(uint8)": np.uint8,
    "tensor(bool)": np.bool_,
}


def ort_providers(
    accelerator: Accelerator,
    cuda_no_fallback: bool = True,
    cuda_ep_tuned: bool = True,
) -> List[Any]:
    if accelerator is Accelerator.CPU:
        return [CPU_PROVIDER]
    if accelerator is Accelerator.GPU:
        cuda_provider: Any = CUDA_PROVIDER
        if cuda_ep_tuned:
            cuda_opts = {"cudnn_conv_use_max_workspace": "1"}
            cuda_provider = (CUDA_PROVIDER, cuda_opts)
        if cuda_no_fallback:
            return [cuda_provider]
        return [cuda_provider, CPU_PROVIDER]
    raise ValueError(f"unsupported accelerator: {accelerator!r}")


def ort_session_options(disable_cpu_fallback: bool) -> ort.SessionOptions:
    so = ort.SessionOptions()
    so.log_severity_level = 3
    if disable_cpu_fallback:
        so.add_session_config_entry("session.disable_cpu_ep_fallback", "1")
    return so


def static_shape(dims: Sequence[Any]) -> List[int]:
    # Symbolic or unknown dims (batch) are pinned to 1 for the static profile.
    return [d if isinstance(d, int) and d > 0 else 1 for d in dims]


def numpy_dtype(ort_type: str) -> np.dtype:
    try:
        return np.dtype(ORT_TO_NUMPY[ort_type])
    except KeyError:
        raise TensorBufferError(
            f"unsupported tensor type {ort_type}", code="BUFFER_UNSUPPORTED_DTYPE"
        ) from None


class OnnxRuntimeEngine(InferenceEngine):
    def __init__(self, cache_dir: Optional[str] = None, cuda_ep_tuned: bool = True):
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self.cuda_ep_tuned = cuda_ep_tuned

    def configure_environment(
        self, cache_dir: Optional[str] = None, accelerator_lib_dir: Optional[str] = None
    ) -> None:
        if cache_dir:
            self.cache_dir = Path(cache_dir)
        if not accelerator_lib_dir:
            return
        if hasattr(ort, "preload_dlls"):
            logger.info("Preloading CUDA/cuDNN libraries from %s", accelerator_lib_dir)
            ort.preload_dlls(directory=str(accelerator_lib_dir))
        else:
            logger.warning(
                "onnxruntime %s cannot preload libraries; ignoring %s",
                ort.__version__,
                accelerator_lib_dir,
            )

    def _stage(self, name: str, model_bytes: bytes) -> Any:
        if self.cache_dir is None:
            return bytes(model_bytes)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        path = self.cache_dir / f"{name}.onnx"
        path.write_bytes(model_bytes)
        logger.info("Wrote %s model to %s (%d bytes)", name, path, len(model_bytes))
        return str(path)

    def compile(self, name: str, model_bytes: bytes, accelerator: Accelerator) -> CompiledModel:
        disable_fallback = accelerator is Accelerator.GPU
        providers = ort_providers(
            accelerator, cuda_no_fallback=True, cuda_ep_tuned=self.cuda_ep_tuned
        )
        source = self._stage(name, model_bytes)
        try:
            sess = ort.InferenceSession(
                source,
                sess_options=ort_session_options(disable_fallback),
                providers=providers,
            )
        except Exception as e:
            if isinstance(source, str):
                Path(source).unlink(missing_ok=True)
            raise AccelerationUnavailable(
                f"failed to compile {name} for {accelerator.value}: {e}",
                code="COMPILE_FAILED",
                detail={"model": name, "accelerator": accelerator.value},
            ) from e
        meta: Dict[str, Any] = {"cpu_fallback_disabled": disable_fallback}
        if isinstance(source, str):
            meta["staged_path"] = source
        return CompiledModel(name=name, handle=sess, accelerator=accelerator, meta=meta)

    def is_fully_accelerated(self, model: CompiledModel) -> bool:
        active = list(model.handle.get_providers())
        logger.debug("%s active providers: %s", model.name, active)
        if model.accelerator is Accelerator.CPU:
            return bool(active) and active[0] == CPU_PROVIDER
        if not active or active[0] != CUDA_PROVIDER:
            return False
        # CPU is always listed; it only holds nodes when fallback was allowed.
        return bool(model.meta.get("cpu_fallback_disabled")) or CPU_PROVIDER not in active

    def _buffers(self, args: Sequence[Any]) -> List[TensorBuffer]:
        return [TensorBuffer(a.name, static_shape(a.shape), numpy_dtype(a.type)) for a in args]

    def create_input_buffers(self, model: CompiledModel) -> List[TensorBuffer]:
        return self._buffers(model.handle.get_inputs())

    def create_output_buffers(self, model: CompiledModel) -> List[TensorBuffer]:
        return self._buffers(model.handle.get_outputs())

    def run(
        self,
        model: CompiledModel,
        inputs: Sequence[TensorBuffer],
        outputs: Sequence[TensorBuffer],
    ) -> None:
        feed = {b.name: b.array() for b in inputs}
        try:
            results = model.handle.run([b.name for b in outputs], feed)
        except Exception as e:
            raise EngineRunError(
                f"{model.name} run failed: {e}", code="RUN_FAILED", detail={"model": model.name}
            ) from e
        for buf, value in zip(outputs, results):
            buf.write(value)

    def release(self, model: CompiledModel) -> None:
        model.handle = None
        staged = model.meta.pop("staged_path", None)
        if staged:
            Path(staged).unlink(missing_ok=True)
