"""
Artifact directory layout and `manifest.json` handling.

    artifact/
      manifest.json
      fp32/encoder.onnx
      fp32/decoder.onnx
      embeddings.bin     raw little-endian float32 [vocab, hidden]
      vocab.txt          one fragment per line
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .config import OcrConfig
from .embeddings import EmbeddingTable
from .errors import ConfigurationError
from .vocabulary import Vocabulary

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"


def read_json(path: Path) -> Dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


def write_json(path: Path, obj: Dict[str, Any]) -> None:
    path.write_text(json.dumps(obj, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")


def choose_manifest_path(artifact_dir: Path) -> Path:
    p = artifact_dir / MANIFEST_NAME
    if p.exists():
        return p
    p2 = artifact_dir.parent / MANIFEST_NAME
    if p2.exists():
        return p2
    raise ConfigurationError(f"{MANIFEST_NAME} not found in {artifact_dir} or its parent.")


def resolve_graph_path(artifact_dir: Path, manifest_path: Path, graph_ref: str) -> Path:
    p = Path(graph_ref)
    if p.is_absolute() and p.exists():
        return p
    candidates = [
        artifact_dir / p,
        manifest_path.parent / p,
        artifact_dir / "fp16" / p.name,
        artifact_dir / "fp32" / p.name,
    ]
    for c in candidates:
        if c.exists():
            return c
    return candidates[0]


def external_data_path(model_path: Path) -> Path:
    return model_path.with_suffix(model_path.suffix + ".data")


def is_within(path: Path, directory: Path) -> bool:
    path, directory = path.resolve(), directory.resolve()
    return path == directory or directory in path.parents


def copy_or_link(src: Path, dst: Path, hardlink: bool) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    if hardlink:
        os.link(src, dst)
    else:
        shutil.copy2(src, dst)


@dataclass(frozen=True)
class ArtifactManifest:
    manifest_path: Path
    encoder_path: Path
    decoder_path: Path
    embeddings_path: Path
    vocab_path: Optional[Path]
    model_id: Optional[str]
    config: OcrConfig

    def read_bytes(self) -> Dict[str, bytes]:
        out = {}
        for key, path in (
            ("encoder", self.encoder_path),
            ("decoder", self.decoder_path),
            ("embeddings", self.embeddings_path),
        ):
            try:
                out[key] = path.read_bytes()
            except OSError as e:
                raise ConfigurationError(f"cannot read {key} from {path}: {e}") from e
        return out

    def load_embeddings(self) -> EmbeddingTable:
        return EmbeddingTable.from_file(self.embeddings_path, self.config.hidden_size)

    def load_vocabulary(self) -> Vocabulary:
        if self.vocab_path is not None:
            return Vocabulary.from_file(self.vocab_path)
        if self.model_id:
            return Vocabulary.from_pretrained(self.model_id)
        raise ConfigurationError("manifest names neither a vocab file nor a model_id")


def load_manifest(artifact_dir: Path) -> ArtifactManifest:
    artifact_dir = Path(artifact_dir)
    manifest_path = choose_manifest_path(artifact_dir)
    cfg = read_json(manifest_path)
    graphs = cfg.get("graphs", {})
    missing = sorted(k for k in ("encoder", "decoder") if k not in graphs)
    if missing:
        raise ConfigurationError(f"manifest graphs missing required key(s): {', '.join(missing)}")
    if "embeddings" not in cfg:
        raise ConfigurationError("manifest is missing 'embeddings'")

    def resolve(ref: str) -> Path:
        return resolve_graph_path(artifact_dir, manifest_path, ref)

    vocab_ref = cfg.get("vocab")
    return ArtifactManifest(
        manifest_path=manifest_path,
        encoder_path=resolve(graphs["encoder"]),
        decoder_path=resolve(graphs["decoder"]),
        embeddings_path=resolve(cfg["embeddings"]),
        vocab_path=resolve(vocab_ref) if vocab_ref else None,
        model_id=cfg.get("model_id"),
        config=OcrConfig.from_mapping(cfg.get("config", {})),
    )


def prepare_artifact(
    *,
    encoder: Path,
    decoder: Path,
    embeddings: Path,
    out_dir: Path,
    vocab_file: Optional[Path] = None,
    model_id: Optional[str] = None,
    config_overrides: Optional[Dict[str, Any]] = None,
    hardlink: bool = False,
) -> Path:
    """Assemble a self-contained artifact directory and return its manifest path."""
    config = OcrConfig.from_mapping(config_overrides or {})
    if vocab_file is None and not model_id:
        raise ConfigurationError("a vocab file or a model_id is required")

    out_dir = Path(out_dir)
    graph_sources = {"encoder": Path(encoder), "decoder": Path(decoder)}
    sources = dict(graph_sources, embeddings=Path(embeddings))
    if vocab_file is not None:
        sources["vocab"] = Path(vocab_file)
    # Everything is checked before the output directory is wiped.
    for key, src in sources.items():
        if not src.exists():
            raise ConfigurationError(f"{key} source missing: {src}")
        if is_within(src, out_dir):
            raise ConfigurationError(
                f"{key} source {src} is inside the output directory {out_dir}"
            )
    for key, src in graph_sources.items():
        if external_data_path(src).exists():
            # Sessions are built from in-memory bytes, which cannot reference sidecar files.
            raise ConfigurationError(f"{key} graph uses external data; re-export it as one file")

    table = EmbeddingTable.from_file(embeddings, config.hidden_size)
    if table.hidden_size != config.hidden_size:
        raise ConfigurationError(
            f"embedding hidden size {table.hidden_size} != configured {config.hidden_size}"
        )
    if vocab_file is not None:
        vocab = Vocabulary.from_file(vocab_file)
    else:
        vocab = Vocabulary.from_pretrained(model_id)
    vocab_text = vocab.to_text()

    if out_dir.exists():
        shutil.rmtree(out_dir)
    (out_dir / "fp32").mkdir(parents=True, exist_ok=True)

    graphs = {}
    for key, src in graph_sources.items():
        copy_or_link(src, out_dir / "fp32" / f"{key}.onnx", hardlink=hardlink)
        graphs[key] = f"fp32/{key}.onnx"
    (out_dir / "embeddings.bin").write_bytes(table.to_bytes())
    (out_dir / "vocab.txt").write_text(vocab_text, encoding="utf-8")

    manifest: Dict[str, Any] = {
        "graphs": graphs,
        "embeddings": "embeddings.bin",
        "vocab": "vocab.txt",
        "config": dict(config_overrides or {}),
    }
    if model_id:
        manifest["model_id"] = model_id
    manifest_path = out_dir / MANIFEST_NAME
    write_json(manifest_path, manifest)
    logger.info(
        "Prepared artifact %s: %d embeddings, %d vocab entries",
        out_dir,
        table.vocab_size,
        len(vocab),
    )
    return manifest_path


def path_size_bytes(path: Path) -> int:
    return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())
