"""Static-shape Japanese OCR on ONNX Runtime: greedy encoder/decoder decode on a fully accelerated GPU."""

from .config import OcrConfig
from .decoder import DecodeResult, DecodeStatus
from .embeddings import EmbeddingTable
from .errors import (
    AccelerationUnavailable,
    ConfigurationError,
    EngineRunError,
    ErrorKind,
    ErrorRecord,
    InitResult,
    OcrError,
    TensorBufferError,
)
from .normalizer import TextNormalizer
from .session import OcrResult, OcrSession
from .vocabulary import TokenVocabularyDecoder, Vocabulary

__version__ = "0.1.0"

__all__ = [
    "AccelerationUnavailable",
    "ConfigurationError",
    "DecodeResult",
    "DecodeStatus",
    "EmbeddingTable",
    "EngineRunError",
    "ErrorKind",
    "ErrorRecord",
    "InitResult",
    "OcrConfig",
    "OcrError",
    "OcrResult",
    "OcrSession",
    "TensorBufferError",
    "TextNormalizer",
    "TokenVocabularyDecoder",
    "Vocabulary",
]
