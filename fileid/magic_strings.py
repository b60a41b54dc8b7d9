"""Scanning of values in magic lines: escaped strings, numbers and formats."""

from __future__ import annotations

import math
import re
import struct
import uuid
import warnings

from .magic_types import (
    MAXSTRING,
    Format,
    Magic,
    MagicFlag,
    MagicType,
    pstring_length_size,
    sign_extend,
    type_size,
)

_U64 = 0xFFFFFFFFFFFFFFFF
_SPACE = " \t\n\v\f\r"
_HEXDIGITS = "0123456789abcdefABCDEF"
_OCTDIGITS = "01234567"

_CONTROL_ESCAPES = {
    "a": 0x07,
    "b": 0x08,
    "f": 0x0C,
    "n": 0x0A,
    "r": 0x0D,
    "t": 0x09,
    "v": 0x0B,
}
_SHOW_ESCAPES = {value: letter for letter, value in _CONTROL_ESCAPES.items()}

# Characters that may be escaped without a warning.
_RELATIONS = "<>&^=!"
_REGEX_SPECIALS = "[]().*?^$|{}"
_PLAIN_ESCAPES = " " + _RELATIONS + "\\"

_STRING_VALUE_TYPES = frozenset({
    MagicType.BESTRING16, MagicType.LESTRING16, MagicType.STRING,
    MagicType.PSTRING, MagicType.REGEX, MagicType.SEARCH, MagicType.NAME,
    MagicType.USE, MagicType.DER, MagicType.OCTAL,
})
_FLOAT_TYPES = frozenset({MagicType.FLOAT, MagicType.BEFLOAT,
                          MagicType.LEFLOAT})
_DOUBLE_TYPES = frozenset({MagicType.DOUBLE, MagicType.BEDOUBLE,
                           MagicType.LEDOUBLE})
_BYTE_FORMAT_TYPES = frozenset({MagicType.BYTE})

_HEX_FLOAT = re.compile(
    r"[+-]?0[xX](?:[0-9a-fA-F]+\.?[0-9a-fA-F]*|\.[0-9a-fA-F]+)"
    r"(?:[pP][+-]?\d+)?")
_DEC_FLOAT = re.compile(
    r"[+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?"
    r"|(?i:inf(?:inity)?|nan))")
_GUID = re.compile(
    r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}"
    r"-[0-9a-fA-F]{12}")
_GUID_TEXT_LEN = 36


class MagicParseError(ValueError):
    """A magic line holds a value that cannot be used."""


def _at(text: str, i: int) -> str:
    return text[i] if 0 <= i < len(text) else ""


def _char_bytes(c: str) -> bytes:
    code = ord(c)
    if code <= 0xFF:
        return bytes((code,))
    return c.encode("utf-8", "surrogateescape")


def hex_to_int(c: str) -> int | None:
    """Value of a single hexadecimal digit, or None for any other character."""
    if len(c) != 1 or c not in _HEXDIGITS:
        return None
    return int(c, 16)


def eat_size(text: str, pos: int) -> int:
    """Skip a C size suffix such as ``UL``, ``h`` or ``c`` after a number."""
    if _at(text, pos).lower() == "u":
        pos += 1
    if _at(text, pos).lower() in ("l", "s", "h", "b", "c") and _at(text, pos):
        pos += 1
    return pos


def get_string(magic: Magic, text: str, pos: int, warn: bool = False) -> int:
    """Read an escaped string value starting at ``pos`` into ``magic``.

    Scanning stops at unescaped white space or the end of the text.  Sets
    ``magic.value`` and ``magic.vallen`` and returns the position where the
    scan stopped.  With ``warn`` set, questionable escapes give a warning.
    Raises MagicParseError for an overlong string or a bad Pascal length.
    """
    out = bytearray()
    limit = MAXSTRING - 1
    nesting = 0
    n = len(text)
    i = pos

    while i < n:
        c = text[i]
        i += 1
        if c == "\0" or c in _SPACE:
            i -= 1
            break
        if len(out) >= limit:
            raise MagicParseError(f"string too long: `{text[pos:]}'")
        if c != "\\":
            if c == "[":
                nesting += 1
            elif c == "]" and nesting > 0:
                nesting -= 1
            out += _char_bytes(c)
            continue

        if i >= n or text[i] == "\0":
            if warn:
                warnings.warn("incomplete escape", stacklevel=2)
            break
        c = text[i]
        i += 1

        if c in _CONTROL_ESCAPES:
            out.append(_CONTROL_ESCAPES[c])
        elif c in _OCTDIGITS:
            val = int(c)
            for _ in range(2):
                if _at(text, i) and _at(text, i) in _OCTDIGITS:
                    val = (val << 3) | int(text[i])
                    i += 1
                else:
                    break
            out.append(val & 0xFF)
        elif c == "x":
            val = ord("x")
            digit = hex_to_int(_at(text, i))
            if digit is not None:
                val = digit
                i += 1
                digit = hex_to_int(_at(text, i))
                if digit is not None:
                    val = (val << 4) + digit
                    i += 1
            out.append(val & 0xFF)
        else:
            if c == ".":
                if magic.type == MagicType.REGEX and nesting == 0 and warn:
                    warnings.warn("escaped dot ('.') found, use \\\\. instead",
                                  stacklevel=2)
                warn = False
            elif c == "\t":
                if warn:
                    warnings.warn("escaped tab found, use \\\\t instead",
                                  stacklevel=2)
                    warn = False
            elif c not in _PLAIN_ESCAPES and warn:
                if 0x20 <= ord(c) <= 0x7E:
                    if c not in _RELATIONS and (
                            magic.type != MagicType.REGEX
                            or c not in _REGEX_SPECIALS):
                        warnings.warn(f"no need to escape `{c}'",
                                      stacklevel=2)
                else:
                    warnings.warn(
                        f"unknown escape sequence: \\{ord(c):03o}",
                        stacklevel=2)
            out += _char_bytes(c)

    magic.value = bytes(out)
    magic.vallen = len(out)
    if magic.type == MagicType.PSTRING:
        try:
            magic.vallen += pstring_length_size(magic.str_flags)
        except ValueError as exc:
            raise MagicParseError(str(exc)) from exc
    return i


def show_string(s: bytes) -> str:
    """Render bytes with C escapes for anything that is not printable ASCII."""
    parts = []
    for b in s:
        if 0o40 <= b <= 0o176:
            parts.append(chr(b))
        elif b in _SHOW_ESCAPES:
            parts.append("\\" + _SHOW_ESCAPES[b])
        else:
            parts.append(f"\\{b:03o}")
    return "".join(parts)


def _check_len(fmt: str, i: int) -> int:
    count = length = 0
    while _at(fmt, i).isdigit() and _at(fmt, i).isascii():
        length = length * 10 + int(fmt[i])
        count += 1
        i += 1
    if count > 5 or length > 1024:
        raise MagicParseError("too long")
    return i


def check_format_type(fmt: str, mtype: MagicType) -> str:
    """Check the printf conversion ``fmt`` (the text after ``%``) for a type.

    Returns the text after the conversion.  Raises MagicParseError with
    ``missing format spec``, ``not valid`` or ``too long``; raises
    ValueError for a type that takes no format at all.
    """
    if not fmt:
        raise MagicParseError("missing format spec")
    kind = MagicType(mtype).format
    i = 0

    if kind in (Format.NUM, Format.QUAD):
        while _at(fmt, i) and _at(fmt, i) in "-.#":
            i += 1
        i = _check_len(fmt, i)
        if _at(fmt, i) == ".":
            i += 1
        i = _check_len(fmt, i)
        if kind == Format.QUAD:
            if fmt[i:i + 2] != "ll":
                raise MagicParseError("not valid")
            i += 2
        c = _at(fmt, i)
        if c == "c" and kind == Format.NUM and mtype in _BYTE_FORMAT_TYPES:
            return fmt[i + 1:]
        if c and c in "iduoxX":
            return fmt[i + 1:]
        raise MagicParseError("not valid")

    if kind in (Format.FLOAT, Format.DOUBLE):
        if _at(fmt, i) == "-":
            i += 1
        if _at(fmt, i) == ".":
            i += 1
        i = _check_len(fmt, i)
        if _at(fmt, i) == ".":
            i += 1
        i = _check_len(fmt, i)
        c = _at(fmt, i)
        if c and c in "eEfFgG":
            return fmt[i + 1:]
        raise MagicParseError("not valid")

    if kind == Format.STR:
        if _at(fmt, i) == "-":
            i += 1
        while _at(fmt, i).isdigit() and _at(fmt, i).isascii():
            i += 1
        if _at(fmt, i) == ".":
            i += 1
            while _at(fmt, i).isdigit() and _at(fmt, i).isascii():
                i += 1
        if _at(fmt, i) == "s":
            return fmt[i + 1:]
        raise MagicParseError("not valid")

    raise ValueError(f"Bad file format {int(mtype)}")


def check_format(magic: Magic) -> bool:
    """Check the printf conversion in a description against the entry type.

    Returns False when the description has no conversion, True when it has
    one valid conversion.  Raises MagicParseError otherwise.
    """
    idx = magic.desc.find("%")
    if idx == -1:
        return False
    name = magic.type.keyword
    if magic.type.format == Format.NONE:
        raise MagicParseError(
            f"No format string for `{magic.desc}' with description `{name}'")
    try:
        rest = check_format_type(magic.desc[idx + 1:], magic.type)
    except MagicParseError as exc:
        raise MagicParseError(
            f"Printf format is {exc} for type `{name}' in description "
            f"`{magic.desc}'") from exc
    if "%" in rest:
        raise MagicParseError(
            f"Too many format strings (should have at most one) for "
            f"`{name}' with description `{magic.desc}'")
    return True


def _strtoull(text: str, pos: int) -> tuple[int, int, bool]:
    """Parse like strtoull with base 0: value, end position, overflow."""
    i = pos
    while _at(text, i) and _at(text, i) in _SPACE:
        i += 1
    negative = False
    if _at(text, i) in ("+", "-") and _at(text, i):
        negative = text[i] == "-"
        i += 1
    if (_at(text, i) == "0" and _at(text, i + 1) in ("x", "X")
            and _at(text, i + 1) and _at(text, i + 2)
            and _at(text, i + 2) in _HEXDIGITS):
        base, digits = 16, _HEXDIGITS
        i += 2
    elif _at(text, i) == "0":
        base, digits = 8, _OCTDIGITS
    else:
        base, digits = 10, "0123456789"
    start = i
    while _at(text, i) and _at(text, i) in digits:
        i += 1
    if i == start:
        return 0, pos, False
    value = int(text[start:i], base)
    if value > _U64:
        return _U64, i, True
    if negative:
        value = (-value) & _U64
    return value, i, False


def _strtod(text: str, pos: int) -> tuple[float, int, bool]:
    """Parse like strtod: value, end position, range error."""
    i = pos
    while _at(text, i) and _at(text, i) in _SPACE:
        i += 1
    m = _HEX_FLOAT.match(text, i)
    if m:
        literal = m.group()
        try:
            return float.fromhex(literal), m.end(), False
        except OverflowError:
            sign = -1.0 if literal.startswith("-") else 1.0
            return math.copysign(math.inf, sign), m.end(), True
    m = _DEC_FLOAT.match(text, i)
    if not m:
        return 0.0, pos, False
    literal = m.group()
    value = float(literal)
    overflow = math.isinf(value) and "inf" not in literal.lower()
    return value, m.end(), overflow


def get_value(magic: Magic, text: str, pos: int) -> int:
    """Read the value of a magic line at ``pos`` according to its type.

    Stores it in ``magic.value`` and returns the position after it.
    Raises MagicParseError when the value is missing, malformed or too
    large for the type.
    """
    mtype = magic.type
    if mtype in _STRING_VALUE_TYPES:
        pos = get_string(magic, text, pos)
        if mtype == MagicType.REGEX:
            try:
                re.compile(magic.value.decode("latin-1"))
            except re.error as exc:
                raise MagicParseError(
                    f"invalid regex `{magic.value.decode('latin-1')}': "
                    f"{exc}") from exc
        return pos

    if magic.reln == "x":
        return pos

    if mtype in _FLOAT_TYPES or mtype in _DOUBLE_TYPES:
        value, end, overflow = _strtod(text, pos)
        if mtype in _FLOAT_TYPES and not overflow:
            try:
                value = struct.unpack("f", struct.pack("f", value))[0]
            except OverflowError:
                value = math.copysign(math.inf, value)
                overflow = True
        magic.value = value
        return pos if overflow else end

    if mtype == MagicType.GUID:
        candidate = text[pos:pos + _GUID_TEXT_LEN]
        if not _GUID.fullmatch(candidate):
            raise MagicParseError(f"invalid guid `{text[pos:]}'")
        magic.value = uuid.UUID(candidate).bytes
        return pos + _GUID_TEXT_LEN

    ull, end, overflow = _strtoull(text, pos)
    unsigned = bool(magic.flag & MagicFlag.UNSIGNED)
    try:
        magic.value = sign_extend(mtype, unsigned, ull)
    except ValueError as exc:
        raise MagicParseError(str(exc)) from exc
    if end == pos:
        raise MagicParseError(f"Unparsable number `{text[pos:]}'")

    size = type_size(mtype)
    if size is None:
        raise MagicParseError(
            f"Expected numeric type got `{mtype.keyword}'")
    q = pos
    while _at(text, q) and _at(text, q) in _SPACE:
        q += 1
    if _at(text, q) == "-" and ull != _U64:
        ull = (-ull) & _U64
    if size < 8:
        high_mask = _U64 & ~((1 << (8 * size)) - 1)
        x = ull & high_mask
        if x and x != high_mask:
            raise MagicParseError(
                f"Overflow for numeric type `{mtype.keyword}' value "
                f"{ull:#x}")
    if overflow:
        return pos
    return eat_size(text, end)