#!/usr/bin/env python3
"""Assemble a runtime artifact directory from exported encoder/decoder graphs.

The embedding table is taken from a raw float32 `.bin` or pulled out of an
exported embedding `.onnx`; the vocabulary comes from a text file or from a
Hugging Face tokenizer.
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from jp_ocr_onnx.artifact import path_size_bytes, prepare_artifact


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--encoder", required=True)
    ap.add_argument("--decoder", required=True)
    ap.add_argument(
        "--embeddings",
        required=True,
        help="Raw little-endian float32 [vocab, hidden] .bin, or an embedding .onnx graph.",
    )
    ap.add_argument("--out_dir", default="artifact")
    ap.add_argument("--vocab_file", default="", help="One fragment per line, line number = id.")
    ap.add_argument("--model_id", default="", help="Tokenizer to read the vocabulary from.")
    ap.add_argument(
        "--config_json",
        default="",
        help='JSON object of config overrides, e.g. \'{"hidden_size": 512}\'.',
    )
    ap.add_argument(
        "--hardlink",
        action="store_true",
        help="Use hardlinks for large files instead of copying.",
    )
    args = ap.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    if not args.vocab_file and not args.model_id:
        ap.error("one of --vocab_file or --model_id is required")
    overrides = json.loads(args.config_json) if args.config_json else {}

    out_dir = Path(args.out_dir).resolve()
    manifest_path = prepare_artifact(
        encoder=Path(args.encoder),
        decoder=Path(args.decoder),
        embeddings=Path(args.embeddings),
        out_dir=out_dir,
        vocab_file=Path(args.vocab_file) if args.vocab_file else None,
        model_id=args.model_id or None,
        config_overrides=overrides,
        hardlink=args.hardlink,
    )

    src_bytes = sum(Path(p).stat().st_size for p in (args.encoder, args.decoder, args.embeddings))
    print(f"manifest: {manifest_path}")
    print(f"output: {out_dir}")
    print(f"source_bytes: {src_bytes}")
    print(f"output_bytes: {path_size_bytes(out_dir)}")


if __name__ == "__main__":
    main()
