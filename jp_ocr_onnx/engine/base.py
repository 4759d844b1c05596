from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..errors import TensorBufferError


class Accelerator(str, enum.Enum):
    GPU = "gpu"
    CPU = "cpu"


class TensorBuffer:
    """
    Fixed-size host buffer bound to one input or output slot of a compiled model.

    Shape and dtype come from the model signature when the buffer is created;
    the byte size is cached then and never changes.
    """

    def __init__(self, name: str, shape: Sequence[int], dtype: Any):
        self.name = name
        self.shape: Tuple[int, ...] = tuple(int(d) for d in shape)
        self.dtype = np.dtype(dtype)
        self._data: Optional[np.ndarray] = np.zeros(self.shape, dtype=self.dtype)
        self._nbytes = int(self._data.nbytes)

    def __repr__(self) -> str:
        return f"TensorBuffer(name={self.name!r}, shape={self.shape}, dtype={self.dtype})"

    @property
    def num_elements(self) -> int:
        return self._nbytes // self.dtype.itemsize

    @property
    def released(self) -> bool:
        return self._data is None

    def size(self) -> int:
        return self._nbytes

    def _require(self) -> np.ndarray:
        if self._data is None:
            raise TensorBufferError(f"buffer {self.name!r} was released", code="BUFFER_RELEASED")
        return self._data

    def write(self, values: Any) -> None:
        data = self._require()
        arr = np.asarray(values)
        if arr.size != data.size:
            raise TensorBufferError(
                f"buffer {self.name!r} holds {data.size} elements, got {arr.size}",
                code="BUFFER_SIZE_MISMATCH",
                detail={"buffer": self.name, "expected": int(data.size), "got": int(arr.size)},
            )
        np.copyto(data, arr.reshape(data.shape), casting="unsafe")

    def read(self) -> np.ndarray:
        return self._require().reshape(-1).copy()

    def array(self) -> np.ndarray:
        """The live array, shaped as the model slot; engines feed and fill it in place."""
        return self._require()

    def release(self) -> None:
        self._data = None


@dataclass
class CompiledModel:
    name: str
    handle: Any
    accelerator: Accelerator
    meta: Dict[str, Any] = field(default_factory=dict)


class InferenceEngine(ABC):
    """
    Capability set the OCR core consumes from a tensor inference runtime.

    Failures are raised as the typed errors in `jp_ocr_onnx.errors`; callers
    convert them into result records at their own boundary.
    """

    def configure_environment(
        self, cache_dir: Optional[str] = None, accelerator_lib_dir: Optional[str] = None
    ) -> None:
        """Set model staging and accelerator library locations before the first compile."""

    @abstractmethod
    def compile(self, name: str, model_bytes: bytes, accelerator: Accelerator) -> CompiledModel:
        raise NotImplementedError

    @abstractmethod
    def is_fully_accelerated(self, model: CompiledModel) -> bool:
        raise NotImplementedError

    @abstractmethod
    def create_input_buffers(self, model: CompiledModel) -> List[TensorBuffer]:
        raise NotImplementedError

    @abstractmethod
    def create_output_buffers(self, model: CompiledModel) -> List[TensorBuffer]:
        raise NotImplementedError

    @abstractmethod
    def run(
        self,
        model: CompiledModel,
        inputs: Sequence[TensorBuffer],
        outputs: Sequence[TensorBuffer],
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    def release(self, model: CompiledModel) -> None:
        raise NotImplementedError
