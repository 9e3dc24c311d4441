"""
Command-line interface for ai-books.

Libraries are kept in a local ChromaDB store so they survive between
invocations.

Sub-commands
------------
create  – Build a library from a file (or stdin).
query   – Print the chunks most relevant to a query.
search  – Print scored previews for a query.
list    – List stored libraries.
stats   – Show statistics for one library.
delete  – Delete a library.
verify  – Check every chunk against its digest.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from .encoding import DEFAULT_N_MAX
from .errors import AIBooksError, ValidationError
from .library import DEFAULT_MAX_RESULTS, DEFAULT_TOP_K, LibraryService
from .store import DEFAULT_NAMESPACE, ChromaLibraryStore


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ai-books",
        description="Chunked knowledge libraries for long documents.",
    )
    parser.add_argument(
        "--db",
        default="./ai_books_db",
        metavar="PATH",
        help="Path to the ChromaDB persistent store (default: ./ai_books_db).",
    )
    parser.add_argument(
        "--namespace",
        default=DEFAULT_NAMESPACE,
        metavar="NAME",
        help=f"Namespace of the libraries inside the store (default: {DEFAULT_NAMESPACE}).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to stderr.")

    sub = parser.add_subparsers(dest="command", required=True)

    # create
    p_create = sub.add_parser("create", help="Create (or replace) a library.")
    p_create.add_argument("name", help="Library name ([a-z0-9_-], max 100 chars).")
    p_create.add_argument("file", nargs="?", help="Text file to encode (reads stdin if omitted).")
    p_create.add_argument(
        "--n-max",
        type=int,
        default=DEFAULT_N_MAX,
        metavar="N",
        help=f"Orbital levels per descriptor, 5-20 (default: {DEFAULT_N_MAX}).",
    )

    # query
    p_query = sub.add_parser("query", help="Retrieve relevant chunks.")
    p_query.add_argument("name", help="Library name.")
    p_query.add_argument("query", help="Question or search terms.")
    p_query.add_argument(
        "-k",
        type=int,
        default=DEFAULT_TOP_K,
        metavar="K",
        help=f"Number of chunks to return (default: {DEFAULT_TOP_K}).",
    )
    p_query.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # search
    p_search = sub.add_parser("search", help="Scored previews for a query.")
    p_search.add_argument("name", help="Library name.")
    p_search.add_argument("query", help="Question or search terms.")
    p_search.add_argument(
        "-n",
        type=int,
        default=DEFAULT_MAX_RESULTS,
        metavar="N",
        help=f"Maximum number of results (default: {DEFAULT_MAX_RESULTS}).",
    )
    p_search.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # list
    p_list = sub.add_parser("list", help="List stored libraries.")
    p_list.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # stats / delete / verify
    sub.add_parser("stats", help="Show library statistics.").add_argument("name")
    sub.add_parser("delete", help="Delete a library.").add_argument("name")
    sub.add_parser("verify", help="Verify chunk integrity.").add_argument("name")

    return parser


def _build_service(db_path: str, namespace: str) -> LibraryService:
    return LibraryService(store=ChromaLibraryStore(path=db_path, namespace=namespace))


def _read_text(path: str | None) -> str:
    """Read UTF-8 text from *path*, or from stdin when *path* is None."""
    try:
        if path is None:
            return sys.stdin.read()
        with open(path, encoding="utf-8") as fh:
            return fh.read()
    except UnicodeDecodeError as exc:
        raise ValidationError(f"Cannot read {path or 'stdin'}: {exc}") from exc


def _run(service: LibraryService, args: argparse.Namespace) -> int:
    if args.command == "create":
        text = _read_text(args.file)
        result = service.create_library(args.name, text, n_max=args.n_max)
        print(
            f"Created library {result['library_name']}: "
            f"{result['chunks_created']} chunks, {result['total_words']} words, "
            f"ratio {result['compression_ratio']:.2f}"
        )

    elif args.command == "query":
        chunks = service.query_library(args.name, args.query, top_k=args.k)
        if args.as_json:
            print(json.dumps(
                [{"id": c.id, "content": c.content, "word_count": c.word_count} for c in chunks],
                indent=2,
            ))
        else:
            for i, c in enumerate(chunks, 1):
                print(f"[{i}] id={c.id} words={c.word_count}")
                print(f"    {c.content[:200]}")
                print()

    elif args.command == "search":
        result = service.search_documents(args.name, args.query, max_results=args.n)
        if args.as_json:
            print(json.dumps(result, indent=2))
        else:
            for i, r in enumerate(result["results"], 1):
                print(f"[{i}] (relevance={r['relevance_score']:.3f}) id={r['chunk_id']}")
                print(f"    {r['content_preview']}")
                print()

    elif args.command == "list":
        libraries = service.list_libraries()
        if not libraries:
            print("No libraries stored.")
            return 0
        if args.as_json:
            print(json.dumps(libraries, indent=2))
        else:
            for lib in libraries:
                print(f"{lib['name']}  chunks={lib['chunks_count']} "
                      f"ratio={lib['compression_ratio']:.2f} updated={lib['updated_at']}")

    elif args.command == "stats":
        print(json.dumps(service.get_library_stats(args.name), indent=2))

    elif args.command == "delete":
        print(service.delete_library(args.name)["message"])

    elif args.command == "verify":
        result = service.verify_integrity(args.name)
        print(f"{result['verified_chunks']}/{result['total_chunks']} chunks verified "
              f"({result['integrity_percentage']:.1f}%)")
        if not result["all_verified"]:
            return 2

    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    service = _build_service(args.db, args.namespace)
    try:
        return _run(service, args)
    except (AIBooksError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
