"""
playr-catalog: index a media folder and browse its playlist from a terminal.

Usage:
    playr-catalog scan ~/Videos
    playr-catalog list ~/Videos --sort filename --rating-min 3 --tag travel --limit 20
    playr-catalog list ~/Videos --sort random --seed 42 --offset 20 --limit 20
    playr-catalog tags ~/Videos
    playr-catalog serve                  # HTTP API, configured by PLAYR_* env vars
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional, Sequence

from loguru import logger

from .config import CatalogConfig
from .errors import CatalogError
from .library import LibraryManager
from .models import SORT_MODES, PlaylistRequest

GREEN = "\033[0;32m"
YELLOW = "\033[1;33m"
BOLD = "\033[1m"
DIM = "\033[2m"
NC = "\033[0m"


def _fmt_duration(duration_ms: int) -> str:
    if duration_ms <= 0:
        return "--:--"
    seconds = duration_ms // 1000
    return f"{seconds // 60}:{seconds % 60:02d}"


def _stars(rating: int) -> str:
    return "★" * rating + "☆" * (5 - rating)


def _cmd_scan(library: LibraryManager, args: argparse.Namespace) -> int:
    result = library.scan()
    print(f"{BOLD}Scan of {library.root}{NC}")
    print("─" * 40)
    print(f"  {GREEN}Added:{NC}    {result.added}")
    print(f"  {YELLOW}Removed:{NC}  {result.removed}")
    print(f"  Updated:  {result.updated}")
    return 0


def _cmd_list(library: LibraryManager, args: argparse.Namespace) -> int:
    if args.rescan:
        library.scan()
    request = PlaylistRequest(
        sort=args.sort,
        rating_min=args.rating_min,
        tags=args.tag or [],
        limit=args.limit,
        offset=args.offset,
        seed=args.seed,
    )
    page = library.get_playlist(request)
    for item in page.items:
        tags = f"  {DIM}[{', '.join(item.tags)}]{NC}" if item.tags else ""
        print(
            f"{item.id:>6}  {_stars(item.rating)}  {_fmt_duration(item.duration_ms):>6}  "
            f"{item.path}{tags}"
        )
    shown_to = request.offset + len(page.items) if request.limit else len(page.items)
    print(f"{DIM}{shown_to} of {page.total}{NC}")
    return 0


def _cmd_tags(library: LibraryManager, args: argparse.Namespace) -> int:
    for name in library.list_tags():
        print(name)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="playr-catalog",
        description="Index a media folder into a catalog and query its playlist.",
    )
    parser.add_argument("--log-level", default=None, help="loguru level (default: PLAYR_LOG_LEVEL or WARNING)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_scan = sub.add_parser("scan", help="Scan a root and reconcile its catalog")
    p_scan.add_argument("root")

    p_list = sub.add_parser("list", help="Print one page of the playlist")
    p_list.add_argument("root")
    p_list.add_argument("--sort", choices=SORT_MODES, default="playlist")
    p_list.add_argument("--rating-min", type=int, default=0, metavar="N")
    p_list.add_argument("--tag", action="append", metavar="NAME",
                        help="Required tag (repeat for AND)")
    p_list.add_argument("--limit", type=int, default=None)
    p_list.add_argument("--offset", type=int, default=0)
    p_list.add_argument("--seed", type=int, default=None, help="Shuffle seed for --sort random")
    p_list.add_argument("--rescan", action="store_true", help="Scan before listing")

    p_tags = sub.add_parser("tags", help="Print the tag vocabulary")
    p_tags.add_argument("root")

    sub.add_parser("serve", help="Run the HTTP API (see PLAYR_* environment variables)")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = CatalogConfig.from_env()

    logger.remove()
    default_level = config.log_level if args.command == "serve" else "WARNING"
    logger.add(sys.stderr, level=(args.log_level or default_level).upper())

    if args.command == "serve":
        from .app import main as serve_main
        if args.log_level:
            config = config.model_copy(update={"log_level": args.log_level.upper()})
        serve_main(config)
        return 0

    library = LibraryManager(extensions=config.media_extensions)
    try:
        library.set_root(args.root)
        handler = {"scan": _cmd_scan, "list": _cmd_list, "tags": _cmd_tags}[args.command]
        return handler(library, args)
    except (CatalogError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    finally:
        library.close()


if __name__ == "__main__":
    sys.exit(main())
