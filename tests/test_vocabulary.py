import pytest

from jp_ocr_onnx.errors import ConfigurationError
from jp_ocr_onnx.vocabulary import TokenVocabularyDecoder, Vocabulary


def test_decode_skips_control_tokens(vocabulary):
    decoder = TokenVocabularyDecoder(vocabulary)
    assert decoder.decode_tokens([2, 7, 8, 3]) == "A."


def test_decode_skips_out_of_range_ids(vocabulary):
    decoder = TokenVocabularyDecoder(vocabulary)
    assert decoder.decode_tokens([5, 10, 6144, 6]) == "あい"


def test_decode_threshold_is_configurable(vocabulary):
    decoder = TokenVocabularyDecoder(vocabulary, special_token_threshold=6)
    assert decoder.decode_tokens([5, 6]) == "い"


def test_vocabulary_lookup(vocabulary):
    assert len(vocabulary) == 10
    assert vocabulary[7] == "A"
    assert 9 in vocabulary
    assert 10 not in vocabulary
    assert "A" not in vocabulary


def test_empty_vocabulary_is_rejected():
    with pytest.raises(ConfigurationError):
        Vocabulary([])


def test_from_file_keeps_whitespace_fragments(tmp_path):
    path = tmp_path / "vocab.txt"
    path.write_bytes("<pad>\r\n \r\nか\n".encode("utf-8"))
    vocab = Vocabulary.from_file(path)
    assert len(vocab) == 3
    assert vocab[1] == " "
    assert vocab[2] == "か"


def test_save_and_reload(tmp_path, vocabulary):
    path = tmp_path / "vocab.txt"
    vocabulary.save(path)
    assert [Vocabulary.from_file(path)[i] for i in range(10)] == [vocabulary[i] for i in range(10)]


@pytest.mark.parametrize("fragment", ["\n", "a\r", "\r\n"])
def test_save_rejects_line_breaks(tmp_path, fragment):
    path = tmp_path / "vocab.txt"
    vocab = Vocabulary(["<pad>", "<unk>", "<s>", "</s>", "<mask>", fragment, "あ"])
    with pytest.raises(ConfigurationError, match=r"\[5\]"):
        vocab.save(path)
    assert not path.exists()


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        Vocabulary.from_file(tmp_path / "missing.txt")


def test_from_pretrained_strips_continuation_markers(monkeypatch):
    transformers = pytest.importorskip("transformers")

    class Tokenizer:
        tokens = ["[PAD]", "[UNK]", "[CLS]", "[SEP]", "[MASK]", "日", "##本", "##"]

        def __len__(self):
            return len(self.tokens)

        def convert_ids_to_tokens(self, ids):
            return [self.tokens[i] for i in ids]

    monkeypatch.setattr(
        transformers.AutoTokenizer, "from_pretrained", lambda model_id: Tokenizer()
    )
    vocab = Vocabulary.from_pretrained("some/model")
    assert [vocab[i] for i in range(5, 8)] == ["日", "本", "##"]
