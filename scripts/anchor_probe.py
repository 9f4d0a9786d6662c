#!/usr/bin/env python3
"""Restore stored annotations against an HTML document and report the outcome.

Loads a document and a JSONL file of annotation records, restores every
annotation inside the chosen container, classifies relations between the
restored ones, and prints a JSON report to stdout. Useful for checking how
a batch of stored annotations survives an edited chapter.

Usage:
    python3 scripts/anchor_probe.py --html chapter.html \
      --annotations annotations.jsonl

    # Restrict to one container and one scope, and dump the painted HTML
    python3 scripts/anchor_probe.py --html chapter.html \
      --annotations annotations.jsonl --container "#content" \
      --scope chapter-3 --painted-html painted.html

    # Custom marker / fallback settings
    python3 scripts/anchor_probe.py --html chapter.html \
      --annotations annotations.jsonl --config engine.json -v
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

import orjson

from textanchor.anchor_types import Annotation, Err, Ok
from textanchor.config import EngineConfig
from textanchor.engine import AnnotationEngine
from textanchor.io_utils import load_jsonl
from textanchor.soup_tree import parse_html

log = logging.getLogger("anchor_probe")


def dump_json(obj: object) -> None:
    sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
    sys.stdout.buffer.write(b"\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Restore stored annotations against an HTML document."
    )
    parser.add_argument("--html", required=True, type=Path, help="HTML document")
    parser.add_argument(
        "--annotations", required=True, type=Path,
        help="JSONL file with one annotation record per line",
    )
    parser.add_argument(
        "--container", default=None,
        help="CSS selector of the container element (default: <body> or document root)",
    )
    parser.add_argument("--config", type=Path, default=None, help="Engine config JSON")
    parser.add_argument("--scope", default=None, help="Only restore annotations of this scope")
    parser.add_argument(
        "--painted-html", type=Path, default=None,
        help="Write the document with restored markers to this path",
    )
    parser.add_argument(
        "--no-relations", action="store_true",
        help="Skip relation classification between restored annotations",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def _load_annotations(path: Path) -> tuple[list[Annotation], list[dict[str, Any]]]:
    annotations: list[Annotation] = []
    rejected: list[dict[str, Any]] = []
    for lineno, raw in enumerate(load_jsonl(path), start=1):
        try:
            annotations.append(Annotation.from_dict(raw))
        except (KeyError, TypeError, ValueError) as exc:
            log.warning("line %d: invalid annotation record: %s", lineno, exc)
            rejected.append({"line": lineno, "error": str(exc)})
    return annotations, rejected


def main() -> None:
    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    for path in (args.html, args.annotations):
        if not path.exists():
            print(f"Error: file not found: {path}", file=sys.stderr)
            sys.exit(1)

    config = EngineConfig.from_json(args.config) if args.config else EngineConfig()
    engine = AnnotationEngine(config)

    soup = parse_html(args.html.read_text(encoding="utf-8"))
    if args.container:
        container = soup.select_one(args.container)
        if container is None:
            print(f"Error: no element matches {args.container!r}", file=sys.stderr)
            sys.exit(1)
    else:
        container = soup.body or soup

    annotations, rejected = _load_annotations(args.annotations)
    if args.scope is not None:
        annotations = [a for a in annotations if a.scope == args.scope]

    # Resolve everything first so methods reflect the unpainted document.
    rows: list[dict[str, Any]] = []
    for annotation in annotations:
        row: dict[str, Any] = {"id": annotation.id, "text": annotation.text[:80]}
        match engine.resolver.resolve_detailed(annotation.position, container, annotation.text):
            case Ok(value=resolved):
                row["method"] = resolved.method
            case Err(error=error):
                row["method"] = None
                row["reason"] = error.reason
                row["detail"] = error.detail
        rows.append(row)

    report = engine.restore_all(annotations, container)
    painted = set(report.restored)
    for row in rows:
        row["painted"] = row["id"] in painted

    if not args.no_relations:
        restored = [a for a in annotations if a.id in painted]
        by_id = {row["id"]: row for row in rows}
        for annotation in restored:
            records = engine.classify_against_existing(annotation, restored, container)
            by_id[annotation.id]["relations"] = [r.to_dict() for r in records]

    if args.painted_html is not None:
        args.painted_html.parent.mkdir(parents=True, exist_ok=True)
        args.painted_html.write_text(str(soup), encoding="utf-8")
        log.info("wrote painted document to %s", args.painted_html)

    dump_json({
        "document": str(args.html),
        "total": len(annotations),
        "restored": len(report.restored),
        "failed": len(report.failed),
        "rejected": rejected,
        "annotations": rows,
    })


if __name__ == "__main__":
    main()
