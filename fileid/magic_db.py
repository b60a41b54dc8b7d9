"""Loading magic files into a sorted database of tests."""

from __future__ import annotations

import functools
import itertools
import os
import struct
import sys
import warnings
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .magic_parse import MagicEntry, MagicParser
from .magic_strings import MagicParseError
from .magic_types import (
    FACTOR_OP_DIV,
    FACTOR_OP_MINUS,
    FACTOR_OP_NONE,
    FACTOR_OP_PLUS,
    FACTOR_OP_TIMES,
    Magic,
    MagicFlag,
    MagicType,
    StrFlag,
    type_size,
)

MULT = 10
_U64 = 0xFFFFFFFFFFFFFFFF
_BANG_NAMES = ("mime", "apple", "ext", "strength")
_TEXT_CONTROLS = frozenset("\a\b\t\n\v\f\r\x1b")

_STRING_TYPES = (MagicType.STRING, MagicType.PSTRING, MagicType.OCTAL)
_STRING16_TYPES = (MagicType.BESTRING16, MagicType.LESTRING16)
_NO_VALUE_TYPES = (MagicType.INDIRECT, MagicType.NAME, MagicType.USE,
                   MagicType.CLEAR)
_TEXTUAL_TYPES = (MagicType.STRING, MagicType.PSTRING, MagicType.BESTRING16,
                  MagicType.LESTRING16)


def _cdiv(a: int, b: int) -> int:
    """Integer division truncating towards zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _as_text(value: object) -> str:
    if isinstance(value, bytes):
        value = value.decode("latin-1")
    return str(value).split("\0", 1)[0]


def _looks_text(data: bytes) -> bool:
    """True when the bytes are valid UTF-8 without odd control characters."""
    try:
        decoded = data.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return all((c >= " " and c != "\x7f") or c in _TEXT_CONTROLS
               for c in decoded)


def nonmagic(s: str | bytes) -> int:
    """Length of a regular expression counting only its literal parts.

    Unescaped metacharacters count 0, a bracket expression counts 1, a
    brace expression counts 0; the result is at least 1.
    """
    text = _as_text(s)
    n = len(text)
    rv = 0
    i = 0
    while i < n:
        c = text[i]
        if c == "\\":
            if i + 1 < n:
                i += 1
            rv += 1
        elif c in "?*.+^$":
            pass
        elif c == "[":
            close = text.find("]", i)
            if close == -1:
                break
            i = close
            continue
        elif c == "{":
            close = text.find("}", i)
            if close == -1:
                break
            i = close
        else:
            rv += 1
        i += 1
    return rv or 1


def _base_strength(m: Magic) -> int:
    if m.type == MagicType.DEFAULT:
        if m.factor_op != FACTOR_OP_NONE:
            warnings.warn(f"Unsupported factor_op in default {m.factor_op}",
                          stacklevel=3)
        return 0

    val = 2 * MULT
    size = type_size(m.type)
    if size is not None:
        val += size * MULT
    elif m.type in _STRING_TYPES:
        val += m.vallen * MULT
    elif m.type in _STRING16_TYPES:
        val += m.vallen * MULT // 2
    elif m.type == MagicType.SEARCH:
        if m.vallen:
            val += m.vallen * max(MULT // m.vallen, 1)
    elif m.type == MagicType.REGEX:
        v = nonmagic(m.value if isinstance(m.value, bytes) else b"")
        val += v * max(MULT // v, 1)
    elif m.type in _NO_VALUE_TYPES:
        pass
    elif m.type == MagicType.DER:
        val += MULT
    else:
        raise ValueError(f"Bad type {int(m.type)}")

    if m.reln in ("x", "!"):
        return 0
    if m.reln == "=":
        return val + MULT
    if m.reln in (">", "<"):
        return val - 2 * MULT
    if m.reln in ("^", "&"):
        return val - MULT
    raise ValueError(f"Bad relation {m.reln}")


def magic_strength(magic: Magic) -> int:
    """Weight of an entry for ordering: stronger tests are tried first."""
    val = _base_strength(magic)
    op = magic.factor_op
    if op == FACTOR_OP_NONE:
        pass
    elif op == FACTOR_OP_PLUS:
        val += magic.factor
    elif op == FACTOR_OP_MINUS:
        val -= magic.factor
    elif op == FACTOR_OP_TIMES:
        val *= magic.factor
    elif op == FACTOR_OP_DIV:
        val = _cdiv(val, magic.factor)
    else:
        raise ValueError(f"Bad factor_op {op!r}")

    val = max(val, 1)
    # Entries without a description depend on later ones to print something.
    if not magic.desc:
        val += 1
    return val


def set_test_type(start: Magic, magic: Magic) -> None:
    """Mark ``start`` as a binary or text test according to ``magic``."""
    mtype = magic.type
    if type_size(mtype) is not None or mtype in (MagicType.DER,
                                                 MagicType.OCTAL):
        start.flag |= MagicFlag.BINTEST
    elif mtype in _TEXTUAL_TYPES:
        if start.str_flags & StrFlag.TEXTTEST:
            start.flag |= MagicFlag.TEXTTEST
        else:
            start.flag |= MagicFlag.BINTEST
    elif mtype in (MagicType.REGEX, MagicType.SEARCH):
        if start.str_flags & StrFlag.BINTEST:
            start.flag |= MagicFlag.BINTEST
        if start.str_flags & StrFlag.TEXTTEST:
            start.flag |= MagicFlag.TEXTTEST
        if start.flag & (MagicFlag.TEXTTEST | MagicFlag.BINTEST):
            return
        value = magic.value if isinstance(magic.value, bytes) else b""
        if _looks_text(value[:magic.vallen]):
            start.flag |= MagicFlag.TEXTTEST
        else:
            start.flag |= MagicFlag.BINTEST


def _value_bytes(value: object) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, float):
        return struct.pack("<d", value)
    return (int(value) & _U64).to_bytes(8, "little")


def _layout(m: Magic) -> tuple:
    """Every field of an entry except its line number, for tie breaking."""
    return (m.cont_level, int(m.flag), m.factor, m.reln, m.vallen,
            int(m.type), int(m.in_type), m.in_op, m.mask_op, m.cond,
            m.factor_op, m.offset, m.in_offset, m.num_mask, m.str_range,
            int(m.str_flags), _value_bytes(m.value), m.desc, m.source,
            m.mimetype, m.apple, m.ext)


def _compare(a: MagicEntry, b: MagicEntry) -> int:
    ma, mb = a.magics[0], b.magics[0]
    sa, sb = magic_strength(ma), magic_strength(mb)
    if sa != sb:
        return -1 if sa > sb else 1
    ka, kb = _layout(ma), _layout(mb)
    if ka == kb:
        if ma.type != MagicType.DER:
            warnings.warn(f"Duplicate magic entry `{ma.desc}'",
                          stacklevel=2)
        return 0
    return -1 if ka > kb else 1


def sort_entries(entries: Iterable[MagicEntry]) -> list[MagicEntry]:
    """Order entries by decreasing strength; warn about duplicates."""
    return sorted(entries, key=functools.cmp_to_key(_compare))


def _groups(magics: Iterable[Magic]) -> Iterator[list[Magic]]:
    """Split a flat list into top-level tests with their continuations."""
    group: list[Magic] = []
    for m in magics:
        if m.cont_level == 0 and group:
            yield group
            group = []
        group.append(m)
    if group:
        yield group


@dataclass
class MagicDatabase:
    """Loaded tests: set 0 holds ordinary tests, set 1 named ones."""

    sets: tuple[list[Magic], list[Magic]] = field(
        default_factory=lambda: ([], []))
    warnings: list[str] = field(default_factory=list)

    def find_name(self, name: str | bytes) -> list[Magic]:
        """The ``name`` test of that name with its continuations.

        Raises KeyError when no such name is defined.
        """
        key = name.encode("latin-1") if isinstance(name, str) else name
        for group in _groups(self.sets[1]):
            if group[0].type == MagicType.NAME and group[0].value == key:
                return group
        raise KeyError(name)

    def list_patterns(self) -> list[str]:
        """Lines listing the tests of each set in the order they are tried."""
        lines: list[str] = []
        for index, magics in enumerate(self.sets):
            lines += [f"Set {index}:", "Binary patterns:"]
            lines += _list(magics, MagicFlag.BINTEST)
            lines.append("Text patterns:")
            lines += _list(magics, MagicFlag.TEXTTEST)
        return lines


def _list(magics: Sequence[Magic], mode: MagicFlag) -> Iterator[str]:
    for group in _groups(magics):
        top = group[0]
        if (top.flag & mode) != mode:
            continue
        desc = next((m.desc for m in group if m.desc), "")
        mime = next((m.mimetype for m in group if m.mimetype), "")
        yield (f"Strength = {magic_strength(top):3d}@{top.lineno}: "
               f"{desc} [{mime}]")


def _load_file(path: str, parser: MagicParser,
               sets: tuple[list[MagicEntry], list[MagicEntry]],
               errors: list[str]) -> None:
    text = Path(path).read_bytes().decode("latin-1")
    handlers = {
        "mime": parser.parse_mime,
        "apple": parser.parse_apple,
        "ext": parser.parse_ext,
        "strength": parser.parse_strength,
    }

    def add(entry: MagicEntry) -> None:
        index = 1 if entry.magics[0].type == MagicType.NAME else 0
        sets[index].append(entry)

    entry = MagicEntry()
    for lineno, line in enumerate(text.split("\n"), 1):
        if not line or line[0] in "\0#":
            continue
        try:
            if line.startswith("!:"):
                name = next((n for n in _BANG_NAMES
                             if line[2:].startswith(n)), None)
                if name is None:
                    raise MagicParseError(f"Unknown !: entry `{line}'")
                handlers[name](entry, line[2 + len(name):])
                continue
            if not parser.parse(entry, line, lineno, path):
                add(entry)
                entry = MagicEntry()
                parser.parse(entry, line, lineno, path)
        except ValueError as exc:
            errors.append(f"{path}, {lineno}: {exc}")
    if entry:
        add(entry)


def _load_one(path: str, parser: MagicParser,
              notes: list[str]) -> tuple[list[Magic], list[Magic]]:
    source = Path(path)
    if source.is_dir():
        files = sorted(str(child) for child in source.iterdir()
                       if not child.name.startswith(".") and child.is_file())
    else:
        files = [path]

    entry_sets: tuple[list[MagicEntry], list[MagicEntry]] = ([], [])
    errors: list[str] = []
    for name in files:
        _load_file(name, parser, entry_sets, errors)
    if errors:
        raise MagicParseError("; ".join(errors))

    result: tuple[list[Magic], list[Magic]] = ([], [])
    for entries, flat in zip(entry_sets, result):
        for entry in entries:
            for m in entry.magics:
                set_test_type(entry.magics[0], m)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            ordered = sort_entries(entries)
        notes.extend(str(w.message) for w in caught)

        tops = [e.magics[0] for e in ordered]
        for k, top in enumerate(tops):
            if top.type == MagicType.DEFAULT:
                if k + 1 < len(tops):
                    notes.append(f"line {tops[k + 1].lineno}: level 0 "
                                 f"\"default\" did not sort last")
                break
        flat.extend(m for e in ordered for m in e.magics)
    return result


def load_magic(path: str | os.PathLike[str]) -> MagicDatabase:
    """Load magic files or directories, separated by ``os.pathsep``.

    Paths that fail are skipped as long as one loads.  When none does, the
    error of a lone path is raised, or MagicParseError for several.
    """
    parser = MagicParser(check=True)
    db = MagicDatabase()
    notes: list[str] = []
    failures: list[Exception] = []
    loaded = False
    for part in itertools.takewhile(bool, os.fspath(path).split(os.pathsep)):
        try:
            sets = _load_one(part, parser, notes)
        except (OSError, ValueError) as exc:
            failures.append(exc)
            continue
        db.sets[0].extend(sets[0])
        db.sets[1].extend(sets[1])
        loaded = True

    if not loaded:
        if len(failures) == 1:
            raise failures[0]
        raise MagicParseError("could not find any valid magic files!") from (
            failures[-1] if failures else None)
    db.warnings = parser.warnings + notes
    return db


def main(argv: Sequence[str] | None = None) -> int:
    """List the patterns of a magic file in the order they are tried."""
    args = sys.argv[1:] if argv is None else list(argv)
    prog = "fileid-magic"
    if len(args) != 1:
        print(f"Usage: {prog} file", file=sys.stderr)
        return 1
    try:
        db = load_magic(args[0])
    except (OSError, ValueError) as exc:
        print(f"{prog}: {exc}", file=sys.stderr)
        return 1
    for note in db.warnings:
        print(f"{prog}: warning: {note}", file=sys.stderr)
    print("\n".join(db.list_patterns()))
    return 0


if __name__ == "__main__":
    sys.exit(main())