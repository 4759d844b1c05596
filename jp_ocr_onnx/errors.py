"""Error kinds, exceptions and result records shared across the runtime."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class ErrorKind(str, enum.Enum):
    CONFIGURATION = "configuration"
    ACCELERATION_UNAVAILABLE = "acceleration_unavailable"
    BUFFER = "buffer"
    RUNTIME = "runtime"


class OcrError(Exception):
    kind: ErrorKind = ErrorKind.RUNTIME

    def __init__(self, message: str, *, code: str = "", detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.kind.name
        self.detail = dict(detail or {})

    def to_record(self) -> "ErrorRecord":
        return ErrorRecord(kind=self.kind, code=self.code, message=self.message, detail=self.detail)


class ConfigurationError(OcrError):
    """Invalid initialization input (missing files, bad sizes, bad manifest)."""

    kind = ErrorKind.CONFIGURATION


class AccelerationUnavailable(OcrError):
    """Compilation failed, or the compiled graph is not fully on the accelerator."""

    kind = ErrorKind.ACCELERATION_UNAVAILABLE


class TensorBufferError(OcrError):
    """Buffer size, read or write failure."""

    kind = ErrorKind.BUFFER


class EngineRunError(OcrError):
    """The inference engine failed to execute a compiled model."""

    kind = ErrorKind.RUNTIME


@dataclass(frozen=True)
class ErrorRecord:
    kind: ErrorKind
    code: str
    message: str
    detail: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def unexpected(cls, exc: BaseException, code: str) -> "ErrorRecord":
        return cls(
            kind=ErrorKind.RUNTIME,
            code=code,
            message=f"{type(exc).__name__}: {exc}",
        )


@dataclass(frozen=True)
class InitResult:
    ok: bool
    errors: List[ErrorRecord] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.ok
