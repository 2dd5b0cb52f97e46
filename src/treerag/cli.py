"""Command line entry point: index a file, query it, or check the summarization model."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Sequence

from dotenv import find_dotenv, load_dotenv

from treerag.chunks import render_structure, render_view
from treerag.errors import TreeRagError
from treerag.llm_provider import LLM, get_llm
from treerag.logging_config import configure_logging
from treerag.search import SearchAlgorithm
from treerag.services.documents import DocumentService, get_document_service

LOGGER = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="treerag", description=__doc__)
    parser.add_argument("--env-file", type=Path, default=None, help="Read settings from this .env file.")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("check-model", help="Load the configured summarization model and report its status.")

    index = commands.add_parser("index", help="Index (or re-index) a .md, .docx or .pdf file into the persistent index.")
    index.add_argument("path", type=Path)
    index.add_argument("--doc-id", default=None, help="Defaults to the file name.")
    index.add_argument("--language", default=None)

    search = commands.add_parser("search", help="Search an indexed document.")
    search.add_argument("doc_id")
    search.add_argument("query")
    search.add_argument(
        "--algorithm",
        choices=[item.value for item in SearchAlgorithm],
        default=SearchAlgorithm.DEFAULT.value,
    )
    search.add_argument("--top-k", type=int, default=5)
    search.add_argument("--level", type=int, default=2)

    structure = commands.add_parser("structure", help="Print the section outline with summaries.")
    structure.add_argument("doc_id")

    section = commands.add_parser("section", help="Print the first section whose title contains TITLE.")
    section.add_argument("doc_id")
    section.add_argument("title")
    return parser.parse_args(argv)


def _check_model() -> int:
    try:
        llm = get_llm()
    except TreeRagError as error:
        LOGGER.error("Invalid model configuration: %s", error)
        return 1
    if not isinstance(llm, LLM):
        print(json.dumps({"model_name": llm.model_name, "model_loaded": True}, indent=2))
        return 0
    exit_code = 0
    try:
        llm.preload()
    except TreeRagError as error:
        LOGGER.error("Failed to load model: %s", error)
        exit_code = 1
    print(json.dumps(asdict(llm.status()), ensure_ascii=False, indent=2))
    return exit_code


async def _run(args: argparse.Namespace, service: DocumentService) -> str:
    if args.command == "index":
        doc_id = args.doc_id or args.path.name
        result = await service.pipeline.index_file(doc_id, args.path, language=args.language)
        return json.dumps(asdict(result), indent=2)
    if args.command == "search":
        outcome = await service.search(
            args.doc_id, args.query, algorithm=args.algorithm, top_k=args.top_k, level=args.level
        )
        return render_view(outcome.nodes)
    if args.command == "structure":
        return render_structure(await service.structure(args.doc_id))
    node = await service.section(args.doc_id, args.title)
    if node is None:
        raise TreeRagError(f"No section matching '{args.title}' in {args.doc_id}")
    return render_view([node])


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    load_dotenv(dotenv_path=args.env_file or find_dotenv(usecwd=True))
    # separate invocations only share documents through a persistent index
    os.environ.setdefault("TREERAG_VECTOR_BACKEND", "chroma")
    configure_logging()

    if args.command == "check-model":
        return _check_model()
    try:
        output = asyncio.run(_run(args, get_document_service()))
    except TreeRagError as error:
        LOGGER.error("%s", error)
        return 1
    print(output)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
