from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class EmbeddingTable:
    """Read-only `token_id -> float32[hidden_size]` lookup used to build the decoder window."""

    def __init__(self, weights: np.ndarray):
        weights = np.ascontiguousarray(weights, dtype=np.float32)
        if weights.ndim != 2 or weights.shape[0] == 0 or weights.shape[1] == 0:
            raise ConfigurationError(
                f"embedding table must be a non-empty [vocab, hidden] matrix, got {weights.shape}"
            )
        weights.setflags(write=False)
        self._weights = weights

    @property
    def vocab_size(self) -> int:
        return int(self._weights.shape[0])

    @property
    def hidden_size(self) -> int:
        return int(self._weights.shape[1])

    @property
    def weights(self) -> np.ndarray:
        return self._weights

    def __len__(self) -> int:
        return self.vocab_size

    def __getitem__(self, token_id: int) -> np.ndarray:
        if not 0 <= int(token_id) < self.vocab_size:
            raise IndexError(f"token {token_id} outside embedding table of {self.vocab_size}")
        return self._weights[int(token_id)]

    @classmethod
    def from_bytes(cls, data: bytes, hidden_size: int) -> "EmbeddingTable":
        """Raw little-endian float32, row-major `[vocab, hidden]`."""
        if hidden_size <= 0:
            raise ConfigurationError("hidden_size must be positive")
        itemsize = np.dtype("<f4").itemsize
        if len(data) == 0 or len(data) % (itemsize * hidden_size):
            raise ConfigurationError(
                f"embedding payload of {len(data)} bytes is not a whole number of "
                f"{hidden_size}-float rows"
            )
        flat = np.frombuffer(data, dtype="<f4")
        table = cls(flat.reshape(-1, hidden_size))
        logger.info(
            "Loaded %d embeddings (%d x %d)", flat.size, table.vocab_size, table.hidden_size
        )
        return table

    @classmethod
    def from_file(cls, path: Union[str, Path], hidden_size: int) -> "EmbeddingTable":
        path = Path(path)
        if path.suffix == ".onnx":
            return cls.from_onnx(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise ConfigurationError(f"cannot read embeddings from {path}: {e}") from e
        return cls.from_bytes(data, hidden_size)

    @classmethod
    def from_onnx(cls, path: Union[str, Path]) -> "EmbeddingTable":
        """
        Pull the token table out of an exported embedding graph.

        Only valid when the graph exposes a direct `[vocab, hidden]` floating
        point initializer; the largest 2-D float initializer is taken.
        Quantized graphs rewrite the Gather input and are rejected.
        """
        import onnx
        from onnx import numpy_helper

        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"embedding graph not found: {path}")
        m = onnx.load(str(path.resolve()), load_external_data=True)
        best = None
        best_elems = -1
        for init in m.graph.initializer:
            arr = numpy_helper.to_array(init)
            if arr.ndim != 2 or arr.dtype.kind != "f":
                continue
            if int(arr.size) > best_elems:
                best = arr
                best_elems = int(arr.size)
        if best is None:
            raise ConfigurationError(f"no [vocab, hidden] float initializer in {path}")
        return cls(best)

    def to_bytes(self) -> bytes:
        return self._weights.astype("<f4", copy=False).tobytes()
