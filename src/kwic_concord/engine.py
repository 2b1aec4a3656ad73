from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Sequence, Set, Tuple


logger = logging.getLogger(__name__)


DEFAULT_WINDOW_SIZE = 20

# Fixed spaces on each side of every keyword block.
KEYWORD_BORDER = 2

TAB_WIDTH = 4

LABEL_MODES = ("path", "basename")


class KwicError(Exception):
    pass


class PatternError(KwicError, ValueError):
    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(f"Invalid pattern {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


class SourceReadError(KwicError, OSError):
    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to open {path}: {reason}")
        self.path = path
        self.reason = reason


@dataclass(frozen=True)
class RawMatch:
    left: str
    keyword: str
    right: str
    label: Optional[str] = None


@dataclass(frozen=True)
class CollectedSet:
    records: Tuple[RawMatch, ...]
    max_keyword_len: int = 0
    max_label_len: int = 0

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class DisplayRecord:
    lhs: str
    keyword_block: str
    rhs: str
    label: Optional[str] = None

    def render(self) -> str:
        text = self.lhs + self.keyword_block + self.rhs
        if self.label is None:
            return text
        return f"{self.label}\t{text}"


@dataclass
class KwicOptions:
    window: int = DEFAULT_WINDOW_SIZE
    sort: bool = False
    label_mode: Optional[str] = None


def wrap_pattern(pattern: str) -> str:
    """
    Make sure the pattern splits out its matches as a capturing group.

    Only the literal first and last characters are checked, so "(a)|(b)" or
    "(a)(b)" are taken as already grouped and every one of their groups
    becomes a separate token. Callers relying on such patterns should wrap
    them in an outer group themselves.
    """
    if pattern.startswith("(") and pattern.endswith(")"):
        return pattern
    return f"({pattern})"


def compile_pattern(pattern: str) -> "re.Pattern[str]":
    try:
        return re.compile(wrap_pattern(pattern))
    except re.error as e:
        raise PatternError(pattern, str(e)) from e


def match_line(pattern: "re.Pattern[str]", line: str) -> List[RawMatch]:
    # split() returns captured groups between the plain segments, so the
    # odd positions are the keywords. Groups that did not take part are None.
    tokens = ["" if t is None else t for t in pattern.split(line)]
    out: List[RawMatch] = []
    for i in range(1, len(tokens), 2):
        keyword = tokens[i]
        # Empty matches would center a blank keyword; keep them as context.
        if not keyword:
            continue
        out.append(
            RawMatch(
                left="".join(tokens[:i]),
                keyword=keyword,
                right="".join(tokens[i + 1 :]),
            )
        )
    return out


class Collector:
    """
    First pass: gathers every match in visiting order and tracks the widest
    keyword and label, which fix the column layout of the whole run.
    """

    def __init__(self) -> None:
        self._records: List[RawMatch] = []
        self.max_keyword_len = 0
        self.max_label_len = 0
        self._frozen = False

    def __len__(self) -> int:
        return len(self._records)

    def add(self, match: RawMatch) -> None:
        if self._frozen:
            raise RuntimeError("collector is frozen; no more matches can be added")
        self._records.append(match)
        self.max_keyword_len = max(self.max_keyword_len, len(match.keyword))
        if match.label is not None:
            self.max_label_len = max(self.max_label_len, len(match.label))

    def add_line(self, pattern: "re.Pattern[str]", line: str, label: Optional[str] = None) -> int:
        matches = match_line(pattern, line)
        for m in matches:
            if label is not None:
                m = RawMatch(left=m.left, keyword=m.keyword, right=m.right, label=label)
            self.add(m)
        return len(matches)

    def freeze(self) -> CollectedSet:
        self._frozen = True
        collected = CollectedSet(
            records=tuple(self._records),
            max_keyword_len=self.max_keyword_len,
            max_label_len=self.max_label_len,
        )
        logger.debug(
            "collected %d matches (max keyword %d, max label %d)",
            len(collected),
            collected.max_keyword_len,
            collected.max_label_len,
        )
        return collected


def sort_by_keyword(records: Iterable[RawMatch]) -> List[RawMatch]:
    # sorted() is stable, so equal keywords keep their collection order.
    return sorted(records, key=lambda r: r.keyword)


def keyword_width(max_keyword_len: int) -> int:
    return max_keyword_len + (max_keyword_len % 2)


def format_keyword(keyword: str, max_keyword_len: int) -> str:
    width = keyword_width(max_keyword_len)
    if len(keyword) % 2:
        keyword += " "
    pad = " " * ((width - len(keyword)) // 2 + KEYWORD_BORDER)
    return pad + keyword + pad


def format_lhs(text: str, window: int) -> str:
    if len(text) > window:
        # Keep the end closest to the keyword.
        return text[len(text) - window :]
    return text.rjust(window)


def format_rhs(text: str, window: int) -> str:
    # Only truncated; short right contexts are left ragged.
    return text[:window]


def format_record(
    record: RawMatch,
    max_keyword_len: int,
    max_label_len: int = 0,
    window: int = DEFAULT_WINDOW_SIZE,
) -> DisplayRecord:
    label = None
    if record.label is not None:
        label = record.label.ljust(max_label_len)
    return DisplayRecord(
        lhs=format_lhs(record.left, window),
        keyword_block=format_keyword(record.keyword, max_keyword_len),
        rhs=format_rhs(record.right, window),
        label=label,
    )


def format_records(
    collected: CollectedSet,
    *,
    window: int = DEFAULT_WINDOW_SIZE,
    sort: bool = False,
) -> List[DisplayRecord]:
    records: Sequence[RawMatch] = collected.records
    if sort:
        records = sort_by_keyword(records)
    return [
        format_record(r, collected.max_keyword_len, collected.max_label_len, window)
        for r in records
    ]


def _walk_error(e: OSError) -> None:
    raise SourceReadError(e.filename or "?", e.strerror or str(e)) from e


def iter_files(root: str) -> Iterator[str]:
    if os.path.isfile(root):
        yield root
        return
    if not os.path.isdir(root):
        raise SourceReadError(root, "No such file or directory")
    seen: Set[Tuple[int, int]] = set()
    for dirpath, dirnames, filenames in os.walk(root, onerror=_walk_error, followlinks=True):
        st = os.stat(dirpath)
        key = (st.st_dev, st.st_ino)
        if key in seen:
            # Symlink cycle: do not descend again.
            dirnames[:] = []
            continue
        seen.add(key)
        dirnames.sort()
        for fn in sorted(filenames):
            p = os.path.join(dirpath, fn)
            if not os.path.isfile(p):
                continue
            yield p


def normalize_tabs(text: str) -> str:
    return text.replace("\t", " " * TAB_WIDTH)


def iter_lines(path: str) -> Iterator[str]:
    try:
        # Only "\n" ends a line; a lone "\r" stays part of the text.
        f = open(path, "r", encoding="utf-8", errors="replace", newline="\n")
    except OSError as e:
        raise SourceReadError(path, e.strerror or str(e)) from e
    with f:
        try:
            for line in f:
                if line.endswith("\r\n"):
                    line = line[:-2]
                elif line.endswith("\n"):
                    line = line[:-1]
                yield normalize_tabs(line)
        except OSError as e:
            raise SourceReadError(path, e.strerror or str(e)) from e


def display_label(path: str, label_mode: Optional[str]) -> Optional[str]:
    if label_mode is None:
        return None
    if label_mode == "path":
        return path
    if label_mode == "basename":
        return os.path.basename(path)
    raise ValueError(f"unknown label mode: {label_mode!r} (expected one of {LABEL_MODES})")


def search_dir(pattern: str, root: str, label_mode: Optional[str] = None) -> CollectedSet:
    rx = compile_pattern(pattern)
    collector = Collector()
    n_files = 0
    for path in iter_files(root):
        n_files += 1
        label = display_label(path, label_mode)
        found = 0
        for line in iter_lines(path):
            found += collector.add_line(rx, line, label)
        if found:
            logger.debug("%s: %d matches", path, found)
    logger.debug("scan: %d files under %s", n_files, root)
    return collector.freeze()


def kwic(pattern: str, root: str, opts: Optional[KwicOptions] = None) -> List[DisplayRecord]:
    opts = opts or KwicOptions()
    if opts.window < 0:
        raise ValueError(f"window size must be >= 0, got {opts.window}")
    collected = search_dir(pattern, root, label_mode=opts.label_mode)
    return format_records(collected, window=opts.window, sort=opts.sort)


def highlight(rec: DisplayRecord, *, color: bool) -> str:
    if not color:
        return rec.render()
    block = rec.keyword_block
    word = block.strip()
    if word:
        start = block.index(word)
        block = f"{block[:start]}\x1b[1;31m{word}\x1b[0m{block[start + len(word):]}"
    colored = DisplayRecord(lhs=rec.lhs, keyword_block=block, rhs=rec.rhs, label=rec.label)
    return colored.render()
