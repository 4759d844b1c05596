"""
OCR session: owns both compiled models, their buffers and the lookup tables.

Lifecycle is explicit. `initialize` compiles, verifies full acceleration,
allocates buffers and warms up; nothing is accepted before it succeeds.
`close` releases everything and gives the accelerator driver a moment to
reclaim device memory before the next `initialize`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .accelerator import AcceleratorCompiler
from .artifact import load_manifest
from .buffers import BufferPool
from .config import OcrConfig
from .decoder import DecodeEngine, DecodeResult, DecodeStatus
from .embeddings import EmbeddingTable
from .engine.base import Accelerator, CompiledModel, InferenceEngine
from .errors import (
    ConfigurationError,
    ErrorKind,
    ErrorRecord,
    InitResult,
    OcrError,
)
from .normalizer import TextNormalizer
from .preprocess import ImageLike, preprocess_image
from .vocabulary import TokenVocabularyDecoder, Vocabulary

logger = logging.getLogger(__name__)


@dataclass
class OcrResult:
    ok: bool
    text: str = ""
    raw_text: str = ""
    tokens: List[int] = field(default_factory=list)
    status: DecodeStatus = DecodeStatus.INIT
    errors: List[ErrorRecord] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)


def _not_ready() -> ErrorRecord:
    return ErrorRecord(
        kind=ErrorKind.CONFIGURATION,
        code="SESSION_NOT_READY",
        message="OCR session is not initialized",
    )


class OcrSession:
    def __init__(
        self,
        engine: InferenceEngine,
        vocabulary: Vocabulary,
        config: Optional[OcrConfig] = None,
        normalizer: Optional[TextNormalizer] = None,
    ):
        self.engine = engine
        self.config = config or OcrConfig()
        self.vocabulary = vocabulary
        self.token_decoder = TokenVocabularyDecoder(vocabulary, self.config.special_token_threshold)
        self.normalizer = normalizer or TextNormalizer()

        self._encoder: Optional[CompiledModel] = None
        self._decoder: Optional[CompiledModel] = None
        self._buffers: Optional[BufferPool] = None
        self._decode_engine: Optional[DecodeEngine] = None
        self._embeddings: Optional[EmbeddingTable] = None
        self._compiler: Optional[AcceleratorCompiler] = None
        self._encoder_gpu = False
        self._decoder_gpu = False
        self._ready = False

    def __enter__(self) -> "OcrSession":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def is_using_gpu(self) -> bool:
        return self._encoder_gpu and self._decoder_gpu

    @property
    def is_encoder_using_gpu(self) -> bool:
        return self._encoder_gpu

    @property
    def is_decoder_using_gpu(self) -> bool:
        return self._decoder_gpu

    @classmethod
    def from_artifact(
        cls,
        artifact_dir: Union[str, Path],
        engine: Optional[InferenceEngine] = None,
        cache_dir: Optional[str] = None,
        accelerator_lib_dir: Optional[str] = None,
    ) -> Tuple[Optional["OcrSession"], InitResult]:
        """Build and initialize a session from an artifact directory's manifest."""
        try:
            manifest = load_manifest(Path(artifact_dir))
            vocabulary = manifest.load_vocabulary()
            embeddings = manifest.load_embeddings()
            payload = manifest.read_bytes()
        except OcrError as e:
            logger.error("Cannot load artifact %s: %s", artifact_dir, e)
            return None, InitResult(ok=False, errors=[e.to_record()])
        except Exception as e:
            logger.exception("Cannot load artifact %s", artifact_dir)
            return None, InitResult(
                ok=False, errors=[ErrorRecord.unexpected(e, "ARTIFACT_UNREADABLE")]
            )

        if engine is None:
            from .engine.onnxruntime_engine import OnnxRuntimeEngine

            engine = OnnxRuntimeEngine(cuda_ep_tuned=manifest.config.cuda_ep_tuned)
        session = cls(engine, vocabulary, config=manifest.config)
        result = session.initialize(
            payload["encoder"],
            payload["decoder"],
            embeddings,
            cache_dir=cache_dir,
            accelerator_lib_dir=accelerator_lib_dir,
        )
        return session, result

    def initialize(
        self,
        encoder_bytes: bytes,
        decoder_bytes: bytes,
        embedding_bytes: Union[bytes, EmbeddingTable],
        cache_dir: Optional[str] = None,
        accelerator_lib_dir: Optional[str] = None,
    ) -> InitResult:
        if self._ready:
            logger.error("OcrSession already initialized")
            return InitResult(
                ok=False,
                errors=[
                    ErrorRecord(
                        kind=ErrorKind.CONFIGURATION,
                        code="ALREADY_INITIALIZED",
                        message="close the session before initializing it again",
                    )
                ],
            )
        logger.info("Initializing OcrSession...")
        try:
            self._initialize(
                encoder_bytes, decoder_bytes, embedding_bytes, cache_dir, accelerator_lib_dir
            )
        except OcrError as e:
            logger.error("Initialization failed: %s", e)
            self._teardown()
            return InitResult(ok=False, errors=[e.to_record()])
        except Exception as e:
            logger.exception("Unexpected failure during initialization")
            self._teardown()
            return InitResult(ok=False, errors=[ErrorRecord.unexpected(e, "INIT_UNEXPECTED")])
        return InitResult(ok=True)

    def _initialize(
        self,
        encoder_bytes: bytes,
        decoder_bytes: bytes,
        embedding_bytes: Union[bytes, EmbeddingTable],
        cache_dir: Optional[str],
        accelerator_lib_dir: Optional[str],
    ) -> None:
        cfg = self.config
        if not encoder_bytes or not decoder_bytes:
            raise ConfigurationError("encoder and decoder model bytes are required")
        if isinstance(embedding_bytes, EmbeddingTable):
            embeddings = embedding_bytes
        else:
            embeddings = EmbeddingTable.from_bytes(embedding_bytes, cfg.hidden_size)
        if embeddings.hidden_size != cfg.hidden_size:
            raise ConfigurationError(
                f"embedding hidden size {embeddings.hidden_size} != {cfg.hidden_size}"
            )
        if embeddings.vocab_size != cfg.vocab_size:
            logger.warning(
                "Loaded %d embeddings (expected: %d)", embeddings.vocab_size, cfg.vocab_size
            )

        self.engine.configure_environment(cache_dir, accelerator_lib_dir)
        accelerator = Accelerator(cfg.accelerator)
        compiler = self._compiler = AcceleratorCompiler(self.engine, accelerator)
        logger.info("=== COMPILING FOR %s ===", accelerator.name)
        self._encoder, self._decoder = compiler.compile_pair(encoder_bytes, decoder_bytes)
        self._encoder_gpu = self._decoder_gpu = accelerator is Accelerator.GPU

        logger.info("=== CREATING BUFFERS ===")
        self._buffers = BufferPool.create(self.engine, self._encoder, self._decoder)
        self._buffers.validate(cfg)

        logger.info("=== STARTING WARMUP ===")
        self._buffers.warmup()

        self._embeddings = embeddings
        self._decode_engine = DecodeEngine(
            self.engine, self._buffers, embeddings, cfg, using_gpu=self.is_using_gpu
        )
        self._ready = True
        logger.info(
            "OcrSession initialized (ACCELERATOR=%s/%s)",
            "GPU" if self._encoder_gpu else "CPU",
            "GPU" if self._decoder_gpu else "CPU",
        )

    def decode(self, image_tensor: Any, max_tokens: int) -> DecodeResult:
        if not self._ready or self._decode_engine is None:
            logger.error("OcrSession not initialized")
            return DecodeResult(tokens=[], status=DecodeStatus.FAILED, errors=[_not_ready()])
        return self._decode_engine.infer(image_tensor, max_tokens)

    def infer_tokens(self, image_tensor: Any, max_tokens: int) -> List[int]:
        return self.decode(image_tensor, max_tokens).tokens

    def recognize(
        self,
        image: ImageLike,
        max_tokens: Optional[int] = None,
        keep_aspect: bool = False,
    ) -> OcrResult:
        if not self._ready:
            logger.error("OcrSession not initialized")
            return OcrResult(ok=False, status=DecodeStatus.FAILED, errors=[_not_ready()])
        try:
            tensor = preprocess_image(image, self.config, keep_aspect=keep_aspect)
        except OcrError as e:
            logger.error("Image preprocessing failed: %s", e)
            return OcrResult(ok=False, status=DecodeStatus.FAILED, errors=[e.to_record()])
        except (OSError, ValueError) as e:
            logger.error("Image preprocessing failed: %s", e)
            return OcrResult(
                ok=False,
                status=DecodeStatus.FAILED,
                errors=[ErrorRecord.unexpected(e, "IMAGE_UNREADABLE")],
            )

        budget = self.config.max_sequence_length if max_tokens is None else max_tokens
        decoded = self.decode(tensor, budget)
        raw_text = self.token_decoder.decode_tokens(decoded.tokens)
        text = self.normalizer.normalize(raw_text)
        return OcrResult(
            ok=decoded.ok,
            text=text,
            raw_text=raw_text,
            tokens=decoded.tokens,
            status=decoded.status,
            errors=list(decoded.errors),
            meta={
                "steps": decoded.steps,
                "encoder_ms": decoded.encoder_ms,
                "decoder_ms": decoded.decoder_ms,
                "ended_by_eos": decoded.status is DecodeStatus.DONE,
                "hit_token_limit": decoded.status is DecodeStatus.TRUNCATED,
            },
        )

    def close(self) -> None:
        if self._ready:
            logger.info("Closing OcrSession...")
        self._teardown()

    def _teardown(self) -> None:
        held_device = self._compiler is not None and self._compiler.released_device
        self._compiler = None
        if self._buffers is not None:
            logger.info("Releasing buffers...")
            self._buffers.release()
            self._buffers = None
        for model in (self._encoder, self._decoder):
            if model is not None:
                held_device = held_device or model.accelerator is Accelerator.GPU
                self.engine.release(model)
        self._encoder = None
        self._decoder = None
        self._decode_engine = None
        self._embeddings = None
        self._encoder_gpu = False
        self._decoder_gpu = False
        was_ready = self._ready
        self._ready = False
        if held_device and self.config.release_pause_s > 0:
            # Rapid re-initialization fails buffer allocation unless the
            # driver gets time to reclaim device memory.
            logger.info("Waiting for GPU resources to be released...")
            time.sleep(self.config.release_pause_s)
        if was_ready:
            logger.info("OcrSession closed - all resources released")
