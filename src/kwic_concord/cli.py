from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Mapping

from kwic_concord import engine as kwic


logger = logging.getLogger(__name__)


LOG_FORMAT = "%(levelname)s: %(message)s"

_TRUTHY = {"1", "true", "yes", "on"}


def window_size(s: str) -> int:
    try:
        n = int(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid window size: {s!r}")
    if n < 0:
        raise argparse.ArgumentTypeError(f"window size must be >= 0, got {n}")
    return n


def configure_logging(env: Mapping[str, str] | None = None) -> None:
    env = os.environ if env is None else env
    name = env.get("KWIC_LOG_LEVEL", "WARNING").upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def use_color(env: Mapping[str, str] | None = None) -> bool:
    env = os.environ if env is None else env
    return env.get("KWIC_COLOR", "").strip().lower() in _TRUTHY and sys.stdout.isatty()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="kwic",
        description="A regex KWIC concordancer: show every match of <pattern> under <dir> in context.",
    )
    p.add_argument("pattern", help="Regular expression to search for")
    p.add_argument("dir", help="Directory (or single file) to search")
    p.add_argument("--sort", action="store_true", help="Sort the output by keyword")
    p.add_argument("--filenames", action="store_true", help="Print full relative path to file")
    p.add_argument("--basenames", action="store_true", help="Print basenames of files only")
    p.add_argument(
        "--window",
        type=window_size,
        default=kwic.DEFAULT_WINDOW_SIZE,
        help=f"Override the default window size of {kwic.DEFAULT_WINDOW_SIZE}",
    )
    return p


def label_mode(args: argparse.Namespace) -> str | None:
    # --filenames wins when both are given.
    if args.filenames:
        return "path"
    if args.basenames:
        return "basename"
    return None


def cmd_kwic(args: argparse.Namespace) -> int:
    opts = kwic.KwicOptions(window=args.window, sort=args.sort, label_mode=label_mode(args))
    try:
        records = kwic.kwic(args.pattern, args.dir, opts)
    except kwic.KwicError as e:
        print(f"kwic: {e}", file=sys.stderr)
        return 1

    color = use_color()
    out = [kwic.highlight(rec, color=color) for rec in records]
    logger.debug("printing %d lines", len(out))
    for line in out:
        print(line)
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv
    configure_logging()
    args = build_parser().parse_args(argv[1:])
    return cmd_kwic(args)


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))
