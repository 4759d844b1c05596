"""
Recognize the text in one image with a prepared artifact directory.

    jp-ocr --artifact_dir artifact --image crop.png
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .session import OcrSession

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INIT_FAILED = 1
EXIT_RECOGNITION_FAILED = 2


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="jp-ocr")
    ap.add_argument("--artifact_dir", required=True)
    ap.add_argument("--image", required=True)
    ap.add_argument(
        "--max_tokens",
        type=int,
        default=0,
        help="Token budget including START; 0 uses the full decode window.",
    )
    ap.add_argument(
        "--keep_aspect",
        action="store_true",
        help="Letterbox onto a white square instead of stretching.",
    )
    ap.add_argument("--raw", action="store_true", help="Print text before normalization.")
    ap.add_argument("--tokens", action="store_true", help="Also print the decoded token ids.")
    ap.add_argument("--out_text", default="")
    ap.add_argument("--cache_dir", default="", help="Stage models here before compiling.")
    ap.add_argument("--lib_dir", default="", help="Directory holding CUDA/cuDNN libraries.")
    ap.add_argument("-v", "--verbose", action="store_true")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if hasattr(sys.stdout, "reconfigure"):
        # Avoid cp1252 crashes on Windows when decoded text contains non-ASCII.
        sys.stdout.reconfigure(encoding="utf-8", errors="replace")

    session, init = OcrSession.from_artifact(
        args.artifact_dir,
        cache_dir=args.cache_dir or None,
        accelerator_lib_dir=args.lib_dir or None,
    )
    if not init.ok or session is None:
        for err in init.errors:
            logger.error("[%s] %s: %s", err.kind.value, err.code, err.message)
        if session is not None:
            session.close()
        return EXIT_INIT_FAILED

    with session:
        result = session.recognize(
            args.image,
            max_tokens=args.max_tokens or None,
            keep_aspect=args.keep_aspect,
        )
    for err in result.errors:
        logger.error("[%s] %s: %s", err.kind.value, err.code, err.message)

    text = result.raw_text if args.raw else result.text
    print(text)
    if args.tokens:
        print(" ".join(str(t) for t in result.tokens))
    logger.info(
        "status=%s steps=%d encoder_ms=%.1f decoder_ms=%.1f",
        result.status.value,
        result.meta.get("steps", 0),
        result.meta.get("encoder_ms", 0.0),
        result.meta.get("decoder_ms", 0.0),
    )
    if args.out_text:
        out_path = Path(args.out_text)
        out_path.write_text(text + "\n", encoding="utf-8")
    return EXIT_OK if result.ok else EXIT_RECOGNITION_FAILED


if __name__ == "__main__":
    sys.exit(main())
