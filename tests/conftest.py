from __future__ import annotations

import numpy as np
import pytest

from fakes import SMALL_CONFIG, SMALL_VOCAB, FakeEngine, small_embeddings

from jp_ocr_onnx.embeddings import EmbeddingTable
from jp_ocr_onnx.session import OcrSession
from jp_ocr_onnx.vocabulary import Vocabulary


@pytest.fixture
def config():
    return SMALL_CONFIG


@pytest.fixture
def vocabulary():
    return Vocabulary(SMALL_VOCAB)


@pytest.fixture
def embedding_table():
    return EmbeddingTable(small_embeddings())


@pytest.fixture
def embedding_bytes():
    return small_embeddings().astype("<f4").tobytes()


@pytest.fixture
def make_session(vocabulary, embedding_bytes):
    """Build a session over a FakeEngine and initialize it; returns (session, engine, result)."""
    sessions = []

    def _make(config=SMALL_CONFIG, initialize=True, **engine_kwargs):
        engine = engine_kwargs.pop("engine", None) or FakeEngine(config, **engine_kwargs)
        session = OcrSession(engine, vocabulary, config=config)
        sessions.append(session)
        result = session.initialize(b"encoder", b"decoder", embedding_bytes) if initialize else None
        return session, engine, result

    yield _make
    for s in sessions:
        s.close()


@pytest.fixture
def image():
    return np.zeros((2, 2, 3), dtype=np.uint8)
