"""
Query the legal context index from the command line.

Usage:
    python search_index.py "how long does the agreement last"
    python search_index.py "indemnification cap" --limit 3 --no-rerank
    python search_index.py "governing law" --context         # Print the cited context block
    python search_index.py --stats
"""

import sys
import json
import argparse
import logging
from pathlib import Path
from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv()

from execution.legal_context.config import build_engine
from execution.legal_context.retriever import InvalidQuery, with_options

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Search the legal context index")
    parser.add_argument("query", nargs="?", help="Natural-language query")
    parser.add_argument("--limit", type=int, default=5, help="Maximum results (default: 5)")
    parser.add_argument("--vector-weight", type=float, default=0.7, help="Vector signal weight (default: 0.7)")
    parser.add_argument("--keyword-weight", type=float, default=0.3, help="Keyword signal weight (default: 0.3)")
    parser.add_argument("--context-size", type=int, default=10000, help="Character budget (default: 10000)")
    parser.add_argument("--no-rerank", action="store_true", help="Disable heuristic re-ranking")
    parser.add_argument("--context", action="store_true", help="Print the cited context block")
    parser.add_argument("--stats", action="store_true", help="Print index statistics and exit")
    args = parser.parse_args()

    engine = build_engine()
    try:
        if args.stats:
            print(json.dumps(engine.store.stats().to_dict(), indent=2))
            return

        options = with_options(
            vector_weight=args.vector_weight,
            keyword_weight=args.keyword_weight,
            reranking=not args.no_rerank,
            context_window_size=args.context_size,
        )
        try:
            results = engine.retriever.retrieve(args.query or "", limit=args.limit, options=options)
        except InvalidQuery as e:
            logger.error(f"Invalid query: {e}")
            sys.exit(2)

        if args.context:
            print(engine.citations.cited_context(results))
            return

        if not results:
            print("No relevant excerpts found.")
            return

        for citation in engine.citations.create_citations(results):
            print(f"* {citation.format('bluebook')}")
        print("-" * 50)
        for i, result in enumerate(results, 1):
            section = result.metadata.get("section_number") or "-"
            print(f"\n{i}. {result.document_name} § {section} (score: {result.score:.4f})")
            print(f"   {result.text[:200]}...")
    finally:
        engine.close()


if __name__ == "__main__":
    main()
