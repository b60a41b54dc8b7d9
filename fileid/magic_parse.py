"""Parsing of magic file lines and their ``!:`` annotations."""

from __future__ import annotations

from dataclasses import dataclass, field

from .magic_strings import (
    MagicParseError,
    check_format,
    eat_size,
    get_value,
    show_string,
)
from .magic_types import (
    APPLE_SIZE,
    CHAR_INDIRECT_RELATIVE,
    EXT_SIZE,
    FACTOR_OP_DIV,
    FACTOR_OP_NONE,
    MAXDESC,
    MAXMIME,
    OP_INDIRECT,
    OP_INVERSE,
    OP_SIGNED,
    SPECIAL_TABLE,
    STRING_DEFAULT_RANGE,
    STRING_MODIFIER_CHARS,
    TYPE_TABLE,
    Magic,
    MagicFlag,
    MagicType,
    Op,
    StrFlag,
    get_op,
    get_standard_integer_type,
    get_type,
    is_string_type,
    sign_extend,
)

_SPACE = " \t\n\v\f\r"
_U64 = 0xFFFFFFFFFFFFFFFF
_LONG_MAX = (1 << 63) - 1
_LONG_MIN = -(1 << 63)
_HEXDIGITS = "0123456789abcdefABCDEF"

_INDIRECT_TYPES = {
    "l": MagicType.LELONG,
    "L": MagicType.BELONG,
    "m": MagicType.MELONG,
    "h": MagicType.LESHORT,
    "s": MagicType.LESHORT,
    "H": MagicType.BESHORT,
    "S": MagicType.BESHORT,
    "c": MagicType.BYTE,
    "b": MagicType.BYTE,
    "C": MagicType.BYTE,
    "B": MagicType.BYTE,
    "e": MagicType.LEDOUBLE,
    "f": MagicType.LEDOUBLE,
    "g": MagicType.LEDOUBLE,
    "E": MagicType.BEDOUBLE,
    "F": MagicType.BEDOUBLE,
    "G": MagicType.BEDOUBLE,
    "i": MagicType.LEID3,
    "I": MagicType.BEID3,
    "o": MagicType.OCTAL,
    "q": MagicType.LEQUAD,
    "Q": MagicType.BEQUAD,
}

_FACTOR_OPS = "+-*/"
_MIME_EXTRA = "+-/.$?:{};="
_APPLE_EXTRA = "!+-./?"
_EXT_EXTRA = ",!+-/@?_$&~"


def _at(text: str, i: int) -> str:
    return text[i] if 0 <= i < len(text) else ""


def _is_space(c: str) -> bool:
    return bool(c) and c in _SPACE


def _skip_space(text: str, pos: int) -> int:
    while _is_space(_at(text, pos)):
        pos += 1
    return pos


def _strtonum(text: str, pos: int) -> tuple[int | None, int]:
    """Parse an integer with C base-0 rules; None when no digits follow."""
    i = _skip_space(text, pos)
    negative = False
    c = _at(text, i)
    if c and c in "+-":
        negative = c == "-"
        i += 1
    nxt = _at(text, i + 2)
    if (_at(text, i) == "0" and _at(text, i + 1) in ("x", "X")
            and _at(text, i + 1) and nxt and nxt in _HEXDIGITS):
        base, digits = 16, _HEXDIGITS
        i += 2
    elif _at(text, i) == "0":
        base, digits = 8, "01234567"
    else:
        base, digits = 10, "0123456789"
    start = i
    while _at(text, i) and _at(text, i) in digits:
        i += 1
    if i == start:
        return None, pos
    value = int(text[start:i], base)
    return (-value if negative else value), i


def _to_long(value: int) -> int:
    return max(_LONG_MIN, min(_LONG_MAX, value))


def _to_ulong(value: int) -> int:
    if abs(value) > _U64:
        return _U64
    return value & _U64


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


def _goodchar(c: str, extra: str) -> bool:
    return bool(c) and ((c.isascii() and c.isalnum()) or c in extra)


@dataclass
class MagicEntry:
    """A top-level magic test together with its continuation lines."""

    magics: list[Magic] = field(default_factory=list)

    @property
    def cont_count(self) -> int:
        return len(self.magics)

    def __bool__(self) -> bool:
        return bool(self.magics)


@dataclass
class MagicParser:
    """Parses magic file lines into entries.

    With ``check`` set, questionable syntax is rejected or warned about as
    when magic files are loaded from source.  Warnings are collected in
    ``warnings``; errors raise MagicParseError.
    """

    check: bool = True
    warnings: list[str] = field(default_factory=list)

    def _warn(self, message: str) -> None:
        self.warnings.append(message)

    # ------------------------------------------------------------------
    # Test lines

    def parse(self, entry: MagicEntry, line: str, lineno: int = 0,
              filename: str = "") -> bool:
        """Parse one test line into ``entry``.

        Returns False, leaving the entry untouched, when the line starts a
        new top-level test while ``entry`` already holds one; the caller
        then stores the entry and parses the line again into a fresh one.
        Returns True when the line was added.
        """
        text = line.split("\0", 1)[0]
        pos = 0
        cont_level = 0
        while _at(text, pos) == ">":
            pos += 1
            cont_level += 1

        if cont_level:
            if not entry.magics:
                raise MagicParseError("No current entry for continuation")
            last = entry.magics[-1]
            if cont_level - last.cont_level > 1:
                self._warn(f"New continuation level {cont_level} is more "
                           f"than one larger than current level "
                           f"{last.cont_level}")
        elif entry.magics:
            return False

        m = Magic(cont_level=cont_level, lineno=lineno,
                  factor_op=FACTOR_OP_NONE)
        entry.magics.append(m)
        try:
            self._parse_line(m, text, pos, filename)
        except MagicParseError:
            entry.magics.pop()
            raise
        return True

    def _parse_line(self, m: Magic, text: str, pos: int,
                    filename: str) -> None:
        if _at(text, pos) == "&":
            pos += 1
            m.flag |= MagicFlag.OFFADD
        if _at(text, pos) == "(":
            pos += 1
            m.flag |= MagicFlag.INDIR
            if m.flag & MagicFlag.OFFADD:
                m.flag = (m.flag & ~MagicFlag.OFFADD) | MagicFlag.INDIROFFADD
            if _at(text, pos) == "&":
                pos += 1
                m.flag |= MagicFlag.OFFADD
        if m.cont_level == 0 and m.flag & (MagicFlag.OFFADD
                                           | MagicFlag.INDIROFFADD):
            raise MagicParseError("relative offset at level 0")

        if _at(text, pos) == "-":
            pos += 1
            m.flag |= MagicFlag.OFFNEGATIVE
        value, end = _strtonum(text, pos)
        if value is None:
            raise MagicParseError(f"offset `{text[pos:]}' invalid")
        m.offset = _to_int32(_to_long(value))
        pos = end

        if m.flag & MagicFlag.INDIR:
            pos = self._parse_indirect_offset(m, text, pos)
        pos = _skip_space(text, pos)

        pos = self._parse_type(m, text, pos)
        pos = self._parse_mask(m, text, pos)
        pos = _skip_space(text, pos)
        pos = self._parse_relation(m, text, pos)
        if m.reln != "x":
            pos = get_value(m, text, pos)

        pos = _skip_space(text, pos)
        if _at(text, pos) == "\b":
            pos += 1
            m.flag |= MagicFlag.NOSPACE
        elif text[pos:pos + 2] == "\\b":
            pos += 2
            m.flag |= MagicFlag.NOSPACE
        desc = text[pos:]
        if len(desc) >= MAXDESC - 1:
            desc = desc[:MAXDESC - 1]
            if self.check:
                self._warn(f"description `{desc}' truncated")
        m.desc = desc
        if not desc:
            m.source = filename

        if self.check:
            check_format(m)
        m.mimetype = ""

    def _parse_indirect_offset(self, m: Magic, text: str, pos: int) -> int:
        m.in_type = MagicType.LONG
        m.in_offset = 0
        m.in_op = 0
        c = _at(text, pos)
        if c in (".", ",") and c:
            if c == ",":
                m.in_op |= OP_SIGNED
            pos += 1
            c = _at(text, pos)
            in_type = _INDIRECT_TYPES.get(c) if c else None
            if in_type is None:
                raise MagicParseError(f"indirect offset type `{c}' invalid")
            m.in_type = in_type
            pos += 1

        if _at(text, pos) == "~":
            m.in_op |= OP_INVERSE
            pos += 1
        c = _at(text, pos)
        op = get_op(c) if c else None
        if op is not None:
            m.in_op |= int(op)
            pos += 1
        if _at(text, pos) == "(":
            m.in_op |= OP_INDIRECT
            pos += 1
        c = _at(text, pos)
        if c and ((c.isascii() and c.isdigit()) or c == "-"):
            value, end = _strtonum(text, pos)
            if value is None:
                raise MagicParseError(f"in_offset `{text[pos:]}' invalid")
            m.in_offset = _to_int32(_to_long(value))
            pos = end

        if _at(text, pos) != ")":
            raise MagicParseError("missing ')' in indirect offset")
        pos += 1
        if m.in_op & OP_INDIRECT:
            if _at(text, pos) != ")":
                raise MagicParseError("missing ')' in indirect offset")
            pos += 1
        return pos

    def _parse_type(self, m: Magic, text: str, pos: int) -> int:
        rest = text[pos:]
        mtype = MagicType.INVALID
        after = rest
        if rest.startswith("u"):
            mtype, after = get_type(TYPE_TABLE, rest[1:])
            if mtype == MagicType.INVALID:
                mtype, after = get_standard_integer_type(rest)
            if mtype != MagicType.INVALID:
                m.flag |= MagicFlag.UNSIGNED
        else:
            mtype, after = get_type(TYPE_TABLE, rest)
            if mtype == MagicType.INVALID:
                after = rest
                nxt = rest[1:2]
                if rest.startswith("d"):
                    mtype, after = get_standard_integer_type(rest)
                elif rest.startswith("s") and not (nxt.isascii()
                                                   and nxt.isalpha()):
                    mtype, after = MagicType.STRING, rest[1:]

        if mtype == MagicType.INVALID:
            mtype, after = get_type(SPECIAL_TABLE, rest)
        if mtype == MagicType.INVALID:
            raise MagicParseError(f"type `{rest}' invalid")
        if mtype == MagicType.NAME and m.cont_level != 0:
            raise MagicParseError(
                f"`name{after}' entries can only be declared at top level")

        m.type = mtype
        if is_string_type(mtype) or mtype == MagicType.DER:
            m.value = b""
        return len(text) - len(after)

    def _parse_mask(self, m: Magic, text: str, pos: int) -> int:
        m.mask_op = 0
        if _at(text, pos) == "~":
            if not m.is_string:
                m.mask_op |= OP_INVERSE
            elif self.check:
                self._warn("'~' invalid for string types")
            pos += 1
        m.str_range = 0
        m.str_flags = (StrFlag.PSTRING_1_LE if m.type == MagicType.PSTRING
                       else StrFlag.NONE)

        c = _at(text, pos)
        op = get_op(c) if c else None
        if op is None:
            return pos
        if not m.is_string:
            return self._parse_op_modifier(m, text, pos, op)
        if op != Op.DIVIDE:
            raise MagicParseError(f"invalid string/indirect op: `{c}'")
        if m.type == MagicType.INDIRECT:
            return self._parse_indirect_modifier(m, text, pos)
        return self._parse_string_modifier(m, text, pos)

    def _parse_op_modifier(self, m: Magic, text: str, pos: int,
                           op: Op) -> int:
        pos += 1
        m.mask_op |= int(op)
        value, end = _strtonum(text, pos)
        if value is None:
            value, end = 0, pos
        unsigned = bool(m.flag & MagicFlag.UNSIGNED)
        m.num_mask = sign_extend(m.type, unsigned, _to_ulong(value))
        return eat_size(text, end)

    def _parse_indirect_modifier(self, m: Magic, text: str, pos: int) -> int:
        while True:
            pos += 1
            c = _at(text, pos)
            if _is_space(c):
                return pos
            if c != CHAR_INDIRECT_RELATIVE:
                raise MagicParseError(f"indirect modifier `{c}' invalid")
            m.str_flags |= StrFlag.INDIRECT_RELATIVE

    @staticmethod
    def _modifier_allowed(mtype: MagicType, c: str) -> bool:
        if c == "l":
            return mtype in (MagicType.PSTRING, MagicType.REGEX)
        if c in "BHhLJ":
            return mtype == MagicType.PSTRING
        return True

    def _parse_string_modifier(self, m: Magic, text: str, pos: int) -> int:
        have_range = False
        i = pos
        while True:
            i += 1
            c = _at(text, i)
            if _is_space(c):
                break
            if c and c.isascii() and c.isdigit():
                if have_range and self.check:
                    self._warn("multiple ranges")
                have_range = True
                value, end = _strtonum(text, i)
                m.str_range = _to_ulong(value or 0) & 0xFFFFFFFF
                if m.str_range == 0:
                    self._warn("zero range")
                i = end - 1
            else:
                flag = STRING_MODIFIER_CHARS.get(c) if c else None
                if flag is None or not self._modifier_allowed(m.type, c):
                    raise MagicParseError(f"string modifier `{c}' invalid")
                if flag & StrFlag.PSTRING_LEN:
                    m.str_flags = StrFlag(
                        (int(m.str_flags) & ~int(StrFlag.PSTRING_LEN))
                        | int(flag))
                else:
                    m.str_flags |= flag
            if _at(text, i + 1) == "/" and not _is_space(_at(text, i + 2)):
                i += 1
        self._string_modifier_check(m)
        return i

    def _string_modifier_check(self, m: Magic) -> None:
        if not self.check:
            return
        flags = m.str_flags
        if ((m.type != MagicType.REGEX
             or not flags & StrFlag.REGEX_LINE_COUNT)
                and (m.type != MagicType.PSTRING
                     and flags & StrFlag.PSTRING_LEN)):
            raise MagicParseError(
                "'/BHhLl' modifiers are only allowed for pascal strings")
        if m.type in (MagicType.BESTRING16, MagicType.LESTRING16):
            if flags:
                raise MagicParseError(
                    "no modifiers allowed for 16-bit strings")
        elif m.type in (MagicType.STRING, MagicType.PSTRING):
            if flags & StrFlag.REGEX_OFFSET_START:
                raise MagicParseError("'/s' only allowed on regex and search")
        elif m.type == MagicType.SEARCH:
            if m.str_range == 0:
                m.str_range = STRING_DEFAULT_RANGE
                raise MagicParseError(
                    f"missing range; defaulting to {STRING_DEFAULT_RANGE}")
        elif m.type == MagicType.REGEX:
            if flags & StrFlag.COMPACT_WHITESPACE:
                raise MagicParseError("'/W' not allowed on regex")
            if flags & StrFlag.COMPACT_OPTIONAL_WHITESPACE:
                raise MagicParseError("'/w' not allowed on regex")
        else:
            raise MagicParseError(f"coding error: m->type={int(m.type)}")

    def _parse_relation(self, m: Magic, text: str, pos: int) -> int:
        c = _at(text, pos)
        if c and c in "<>":
            m.reln = c
            pos += 1
            if _at(text, pos) == "=":
                if self.check:
                    raise MagicParseError(f"{c}= not supported")
                pos += 1
        elif c and c in "&^=":
            m.reln = c
            pos += 1
            if _at(text, pos) == "=":
                pos += 1
        elif c == "!":
            m.reln = c
            pos += 1
        else:
            m.reln = "="
            nxt = _at(text, pos + 1)
            if c == "x" and (not nxt or _is_space(nxt)):
                m.reln = "x"
                pos += 1
        return pos

    # ------------------------------------------------------------------
    # Annotations

    @staticmethod
    def _require(entry: MagicEntry, what: str) -> None:
        if not entry.magics:
            raise MagicParseError(f"No current entry for !:{what} type")

    def parse_strength(self, entry: MagicEntry, line: str) -> None:
        """Apply a ``!:strength`` annotation such as ``+20`` to the entry."""
        self._require(entry, "strength")
        m = entry.magics[0]
        line = line.split("\0", 1)[0]
        if m.factor_op != FACTOR_OP_NONE:
            raise MagicParseError(
                f"Current entry already has a strength type: "
                f"{m.factor_op} {m.factor}")
        if m.type == MagicType.NAME:
            name = m.value if isinstance(m.value, bytes) else b""
            raise MagicParseError(
                f"{show_string(name)}: Strength setting is not supported "
                f"in \"name\" magic entries")

        pos = _skip_space(line, 0)
        c = _at(line, pos)
        if c and c in _FACTOR_OPS:
            m.factor_op = c
            pos += 1
        elif c:
            raise MagicParseError(f"Unknown factor op `{c}'")
        pos = _skip_space(line, pos)
        value, end = _strtonum(line, pos)
        if value is None:
            value, end = 0, pos
        factor = _to_ulong(value)
        try:
            if factor > 255:
                raise MagicParseError(f"Too large factor `{factor}'")
            rest = _at(line, end)
            if rest and not _is_space(rest):
                raise MagicParseError(f"Bad factor `{line[pos:]}'")
            m.factor = factor
            if factor == 0 and m.factor_op == FACTOR_OP_DIV:
                raise MagicParseError(
                    f"Cannot have factor op `{m.factor_op}' and factor 0")
        except MagicParseError:
            m.factor_op = FACTOR_OP_NONE
            m.factor = 0
            raise

    def _parse_extra(self, entry: MagicEntry, line: str, attr: str,
                     size: int, name: str, extra: str,
                     terminated: bool) -> None:
        self._require(entry, name.lower())
        m = entry.magics[-1]
        line = line.split("\0", 1)[0]
        current = getattr(m, attr)
        if current:
            raise MagicParseError(
                f"Current entry already has a {name} type `{current}', "
                f"new type `{line}'")
        if not m.desc:
            raise MagicParseError(
                f"Current entry does not yet have a description for adding "
                f"a {name} type")

        start = _skip_space(line, 0)
        end = start
        while end < len(line) and end - start < size and _goodchar(
                line[end], extra):
            end += 1
        value = line[start:end]
        nxt = _at(line, end)
        if len(value) == size and nxt:
            if terminated:
                value = value[:size - 1]
            if self.check:
                self._warn(f"{name} type `{line}' truncated {len(value)}")
        else:
            if terminated and len(value) == size:
                value = value[:size - 1]
            if nxt and not _is_space(nxt) and not _goodchar(nxt, extra):
                self._warn(f"{name} type `{line}' has bad char '{nxt}'")
        if not value:
            raise MagicParseError(f"Bad magic entry '{line}'")
        setattr(m, attr, value)

    def parse_mime(self, entry: MagicEntry, line: str) -> None:
        """Apply a ``!:mime`` annotation to the last line of the entry."""
        self._parse_extra(entry, line, "mimetype", MAXMIME, "MIME",
                          _MIME_EXTRA, True)

    def parse_apple(self, entry: MagicEntry, line: str) -> None:
        """Apply a ``!:apple`` creator/type annotation."""
        self._parse_extra(entry, line, "apple", APPLE_SIZE, "APPLE",
                          _APPLE_EXTRA, False)

    def parse_ext(self, entry: MagicEntry, line: str) -> None:
        """Apply a ``!:ext`` list of file name extensions."""
        self._parse_extra(entry, line, "ext", EXT_SIZE, "EXTENSION",
                          _EXT_EXTRA, False)