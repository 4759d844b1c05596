import numpy as np
import pytest

from fakes import small_embeddings

from jp_ocr_onnx.embeddings import EmbeddingTable
from jp_ocr_onnx.errors import ConfigurationError


def test_from_bytes():
    weights = small_embeddings()
    table = EmbeddingTable.from_bytes(weights.astype("<f4").tobytes(), hidden_size=4)
    assert (table.vocab_size, table.hidden_size) == (10, 4)
    np.testing.assert_array_equal(table[7], weights[7])
    assert table.to_bytes() == weights.astype("<f4").tobytes()


@pytest.mark.parametrize("payload", [b"", b"\x00" * 20])
def test_from_bytes_rejects_partial_rows(payload):
    with pytest.raises(ConfigurationError):
        EmbeddingTable.from_bytes(payload, hidden_size=4)


def test_lookup_out_of_range():
    table = EmbeddingTable(small_embeddings())
    with pytest.raises(IndexError):
        table[10]
    with pytest.raises(IndexError):
        table[-1]


def test_rows_are_read_only():
    table = EmbeddingTable(small_embeddings())
    with pytest.raises(ValueError):
        table[3][0] = 1.0


def test_rejects_non_matrix():
    with pytest.raises(ConfigurationError):
        EmbeddingTable(np.zeros(4, dtype=np.float32))


def test_from_file_missing(tmp_path):
    with pytest.raises(ConfigurationError):
        EmbeddingTable.from_file(tmp_path / "embeddings.bin", hidden_size=4)


def test_from_onnx_picks_token_table(tmp_path):
    onnx = pytest.importorskip("onnx")
    from onnx import TensorProto, helper, numpy_helper

    weights = small_embeddings()
    graph = helper.make_graph(
        [
            helper.make_node("Gather", ["embed_tokens", "input_ids"], ["gathered"]),
            helper.make_node("Mul", ["gathered", "scale"], ["inputs_embeds"]),
        ],
        "embed",
        [helper.make_tensor_value_info("input_ids", TensorProto.INT64, [1, 3])],
        [helper.make_tensor_value_info("inputs_embeds", TensorProto.FLOAT, [1, 3, 4])],
        initializer=[
            numpy_helper.from_array(weights, "embed_tokens"),
            numpy_helper.from_array(np.ones((1, 4), dtype=np.float32), "scale"),
        ],
    )
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    path = tmp_path / "embed.onnx"
    onnx.save(model, str(path))

    table = EmbeddingTable.from_file(path, hidden_size=4)
    np.testing.assert_array_equal(table.weights, weights)
