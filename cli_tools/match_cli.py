import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent))

from config.settings import LOG_LEVEL  # noqa: E402
from moderation.gate import GateOutcome  # noqa: E402
from moderation.service import ModerationConfig  # noqa: E402
from search.matcher import CatalogEmptyError  # noqa: E402


def _build_parser():
    parser = argparse.ArgumentParser(
        description="Match one chat message to a catalog song (no API server)."
    )
    parser.add_argument("text", help="Chat message to match")
    parser.add_argument("--allow-explicit", action="store_true", help="Allow explicit songs")
    parser.add_argument("--user-id", type=str, default=None, help="User id (logging only)")
    parser.add_argument(
        "--recent",
        type=str,
        default="",
        help="Comma-separated song ids recently shown to the user",
    )
    parser.add_argument("--strict", action="store_true", help="Strict moderation (blocks spam)")
    parser.add_argument("--allow-nsfw", action="store_true", help="Do not filter NSFW messages")
    parser.add_argument(
        "--search",
        choices=["exact", "phrase", "embedding", "all"],
        default=None,
        help="Run catalog search with this strategy instead of matching",
    )
    parser.add_argument("--limit", type=int, default=10, help="Result limit for --search")
    parser.add_argument("--json", action="store_true", help="Print raw JSON payload")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    return parser


def _print_match(payload):
    if payload.get("blocked"):
        print(f"[BLOCKED] {payload.get('category')}: {payload.get('message')}")
        return

    primary = payload["primary"]
    explanation = payload["explanation"]
    print(f"Primary: {primary['title']} - {primary['artist']} ({primary['id']})")
    print(f"Strategy: {payload['strategy']}  confidence={payload['confidence']:.3f}")
    if explanation.get("matched_phrase"):
        print(f"Matched phrase: {explanation['matched_phrase']} ({explanation.get('match_type')})")
    if explanation.get("similarity") is not None:
        print(f"Similarity: {explanation['similarity']:.4f}")
    if explanation.get("fallback_reason"):
        print(f"Fallback: {explanation['fallback_reason']}")
    for idx, alt in enumerate(payload["alternates"], 1):
        print(f"  alt {idx}. {alt['title']} - {alt['artist']} ({alt['id']})")


def _print_search(query, hits):
    print(f"Query: {query}")
    print(f"Results: {len(hits)}")
    print("-" * 80)
    if not hits:
        print("No results returned.")
    for idx, hit in enumerate(hits, 1):
        print(f"{idx}. {hit['title']} - {hit['artist']}  [{hit['strategy']} {hit['score']:.4f}]")


async def _run(args):
    from api.main import build_services

    services = build_services()

    if args.search:
        hits = await services.search.search(args.text, limit=args.limit, strategy=args.search)
        return {"query": args.text, "results": [h.to_dict() for h in hits]}

    recent = [s.strip() for s in args.recent.split(",") if s.strip()]
    outcome = await services.gate.process(
        services.matcher,
        args.text,
        allow_explicit=args.allow_explicit,
        user_id=args.user_id,
        recent_history=recent,
        config=ModerationConfig(strict_mode=args.strict, allow_nsfw=args.allow_nsfw),
    )
    if isinstance(outcome, GateOutcome):
        return outcome.to_dict()

    data = outcome.to_dict()
    data["blocked"] = False
    return data


def main():
    args = _build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.debug else LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        payload = asyncio.run(_run(args))
    except CatalogEmptyError as e:
        raise SystemExit(f"[ERROR] {e}")

    if args.json:
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    if args.search:
        _print_search(args.text, payload["results"])
    else:
        _print_match(payload)


if __name__ == "__main__":
    main()
