import logging

import numpy as np
import pytest

from fakes import ENCODER_FILL, SMALL_CONFIG, FakeEngine, small_embeddings

from jp_ocr_onnx.buffers import BufferPool
from jp_ocr_onnx.config import OcrConfig
from jp_ocr_onnx.decoder import DecodeEngine, DecodeState, DecodeStatus, greedy_token
from jp_ocr_onnx.embeddings import EmbeddingTable
from jp_ocr_onnx.engine.base import Accelerator
from jp_ocr_onnx.errors import ErrorKind

IMAGE = np.zeros(SMALL_CONFIG.image_elements, dtype=np.float32)


def build(engine, config=SMALL_CONFIG, table=None, using_gpu=False):
    encoder = engine.compile("encoder", b"e", Accelerator.GPU)
    decoder = engine.compile("decoder", b"d", Accelerator.GPU)
    pool = BufferPool.create(engine, encoder, decoder)
    table = table or EmbeddingTable(small_embeddings())
    return DecodeEngine(engine, pool, table, config, using_gpu=using_gpu)


def test_greedy_token_prefers_first_maximum():
    assert greedy_token(np.array([0.0, 3.0, 1.0, 3.0], dtype=np.float32), 0) == 1


def test_greedy_token_ignores_nan():
    row = np.array([np.nan, 1.0, 2.0, np.nan], dtype=np.float32)
    assert greedy_token(row, 0) == 2


@pytest.mark.parametrize(
    "row",
    [
        np.full(4, -np.inf, dtype=np.float32),
        np.full(4, np.nan, dtype=np.float32),
    ],
)
def test_greedy_token_without_finite_winner_returns_default(row):
    assert greedy_token(row, 0) == 0


def test_decode_state_reset_places_start():
    state = DecodeState.allocate(SMALL_CONFIG)
    state.push(7, np.ones(4, dtype=np.float32))
    state.reset(2, np.full(4, 9.0, dtype=np.float32), 0)
    assert state.tokens() == [2]
    assert state.attention_mask.tolist() == [1.0, 0, 0, 0, 0, 0]
    assert state.embedding_window[0].tolist() == [9.0] * 4
    assert not state.embedding_window[1:].any()


def test_decode_state_push_past_capacity():
    state = DecodeState.allocate(SMALL_CONFIG)
    for _ in range(state.capacity):
        state.push(5, np.zeros(4, dtype=np.float32))
    with pytest.raises(IndexError):
        state.push(5, np.zeros(4, dtype=np.float32))


def test_stops_on_end_token():
    engine = FakeEngine(script=[5, 6, 3])
    result = build(engine).infer(IMAGE, 300)

    assert result.status is DecodeStatus.DONE
    assert result.ok
    assert result.tokens == [2, 5, 6]
    assert result.steps == 3
    assert engine.runs == ["encoder", "decoder", "decoder", "decoder"]


def test_decoder_sees_window_and_encoder_states():
    engine = FakeEngine(script=[5, 6, 3])
    table = small_embeddings()
    build(engine).infer(IMAGE, 300)

    last = engine.decoder_feeds[-1]
    assert last["attention_mask"].tolist() == [1, 1, 1, 0, 0, 0]
    window = last["inputs_embeds"].reshape(6, 4)
    np.testing.assert_array_equal(window[:3], table[[2, 5, 6]])
    assert not window[3:].any()
    assert np.all(last["encoder_hidden_states"] == ENCODER_FILL)


def test_runs_to_window_capacity():
    engine = FakeEngine(script=[5] * 10)
    result = build(engine).infer(IMAGE, 300)

    assert result.status is DecodeStatus.TRUNCATED
    assert result.ok
    assert result.tokens == [2, 5, 5, 5, 5, 5]
    assert result.steps == SMALL_CONFIG.max_sequence_length - 1


@pytest.mark.parametrize("max_tokens,expected_len", [(3, 3), (1, 1), (0, 1), (-4, 1)])
def test_respects_token_budget(max_tokens, expected_len):
    engine = FakeEngine(script=[5] * 10)
    result = build(engine).infer(IMAGE, max_tokens)

    assert result.status is DecodeStatus.TRUNCATED
    assert len(result.tokens) == expected_len
    assert result.tokens[0] == SMALL_CONFIG.start_token
    assert result.steps == expected_len - 1


def test_tie_break_picks_lowest_index():
    def row(position):
        r = np.zeros(SMALL_CONFIG.vocab_size, dtype=np.float32)
        if position == 1:
            r[8] = r[6] = 4.0
        else:
            r[3] = 1.0
        return r

    result = build(FakeEngine(row_fn=row)).infer(IMAGE, 300)
    assert result.tokens == [2, 6]


def test_reads_logits_row_of_last_filled_position():
    # Only the row at position - 1 carries a signal; any other row would pick PAD.
    engine = FakeEngine(script=[7, 8, 9, 3])
    result = build(engine).infer(IMAGE, 300)
    assert result.tokens == [2, 7, 8, 9]


def test_token_outside_embedding_table_fails():
    table = EmbeddingTable(small_embeddings(vocab_size=8))
    engine = FakeEngine(script=[5, 9, 3])
    result = build(engine, table=table).infer(IMAGE, 300)

    assert result.status is DecodeStatus.FAILED
    assert result.tokens == [2, 5]
    assert result.errors[0].code == "INVALID_TOKEN"


def test_encoder_failure_returns_empty():
    engine = FakeEngine(script=[5, 3], fail_runs=[("encoder", 0)])
    result = build(engine).infer(IMAGE, 300)

    assert result.status is DecodeStatus.FAILED
    assert result.tokens == []
    assert result.errors[0].kind is ErrorKind.RUNTIME
    assert "decoder" not in engine.runs


def test_wrong_image_size_fails_before_encoding():
    engine = FakeEngine(script=[5, 3])
    result = build(engine).infer(np.zeros(5, dtype=np.float32), 300)

    assert result.tokens == []
    assert result.errors[0].code == "BUFFER_SIZE_MISMATCH"
    assert engine.runs == []


def test_decoder_failure_keeps_partial_tokens():
    engine = FakeEngine(script=[5, 6, 7, 3], fail_runs=[("decoder", 2)])
    decode = build(engine)
    result = decode.infer(IMAGE, 300)

    assert result.status is DecodeStatus.FAILED
    assert not result.ok
    assert result.tokens == [2, 5, 6]
    assert result.errors[0].code == "RUN_FAILED"
    assert decode.status is DecodeStatus.FAILED


def test_short_logits_buffer_fails():
    engine = FakeEngine(script=[5] * 10, logits_elements=2 * SMALL_CONFIG.vocab_size)
    result = build(engine).infer(IMAGE, 300)

    assert result.status is DecodeStatus.FAILED
    assert result.tokens == [2, 5, 5]
    assert result.errors[0].code == "LOGITS_TOO_SMALL"


def test_unexpected_failure_is_reported(monkeypatch):
    engine = FakeEngine(script=[5, 3])
    decode = build(engine)

    def explode(*args, **kwargs):
        raise ZeroDivisionError("boom")

    monkeypatch.setattr(engine, "run", explode)
    result = decode.infer(IMAGE, 300)
    assert result.status is DecodeStatus.FAILED
    assert result.errors[0].code == "INFER_UNEXPECTED"
    assert "ZeroDivisionError" in result.errors[0].message


def test_state_is_reset_between_calls():
    engine = FakeEngine(script=[5, 6, 3])
    decode = build(engine)
    first = decode.infer(IMAGE, 300)
    second = decode.infer(IMAGE, 300)
    assert first.tokens == second.tokens == [2, 5, 6]


def test_latency_warning_only_on_gpu(monkeypatch, caplog):
    ticks = iter(float(i) for i in range(1000))
    monkeypatch.setattr("jp_ocr_onnx.decoder.time.perf_counter", lambda: next(ticks))
    config = OcrConfig(
        image_size=2, max_sequence_length=6, vocab_size=10, hidden_size=4, latency_budget_ms=1
    )

    with caplog.at_level(logging.WARNING, logger="jp_ocr_onnx.decoder"):
        build(FakeEngine(config, script=[3]), config=config, using_gpu=True).infer(IMAGE, 300)
    assert "exceeded" in caplog.text

    caplog.clear()
    with caplog.at_level(logging.WARNING, logger="jp_ocr_onnx.decoder"):
        build(FakeEngine(config, script=[3]), config=config, using_gpu=False).infer(IMAGE, 300)
    assert "exceeded" not in caplog.text
