"""Magic entry types, flags and the value helpers shared by the parser."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import NamedTuple, Union

MAXDESC = 64
MAXMIME = 80
MAXSTRING = 128
APPLE_SIZE = 8
EXT_SIZE = 64
GUID_SIZE = 16

FACTOR_OP_NONE = ""
FACTOR_OP_PLUS = "+"
FACTOR_OP_MINUS = "-"
FACTOR_OP_TIMES = "*"
FACTOR_OP_DIV = "/"

STRING_DEFAULT_RANGE = 100

_U64 = 0xFFFFFFFFFFFFFFFF


class MagicType(enum.IntEnum):
    """Types a magic test can read, numbered as in the compiled database."""

    INVALID = 0
    BYTE = 1
    SHORT = 2
    DEFAULT = 3
    LONG = 4
    STRING = 5
    DATE = 6
    BESHORT = 7
    BELONG = 8
    BEDATE = 9
    LESHORT = 10
    LELONG = 11
    LEDATE = 12
    PSTRING = 13
    LDATE = 14
    BELDATE = 15
    LELDATE = 16
    REGEX = 17
    BESTRING16 = 18
    LESTRING16 = 19
    SEARCH = 20
    MEDATE = 21
    MELDATE = 22
    MELONG = 23
    QUAD = 24
    LEQUAD = 25
    BEQUAD = 26
    QDATE = 27
    LEQDATE = 28
    BEQDATE = 29
    QLDATE = 30
    LEQLDATE = 31
    BEQLDATE = 32
    FLOAT = 33
    BEFLOAT = 34
    LEFLOAT = 35
    DOUBLE = 36
    BEDOUBLE = 37
    LEDOUBLE = 38
    LEID3 = 39
    BEID3 = 40
    INDIRECT = 41
    QWDATE = 42
    LEQWDATE = 43
    BEQWDATE = 44
    NAME = 45
    USE = 46
    CLEAR = 47
    DER = 48
    GUID = 49
    OFFSET = 50
    BEVARINT = 51
    LEVARINT = 52
    MSDOSDATE = 53
    LEMSDOSDATE = 54
    BEMSDOSDATE = 55
    MSDOSTIME = 56
    LEMSDOSTIME = 57
    BEMSDOSTIME = 58
    OCTAL = 59

    @property
    def keyword(self) -> str:
        """The name used for this type in magic files."""
        return _KEYWORDS[self]

    @property
    def format(self) -> Format:
        """The kind of printf conversion a description may use."""
        return _FORMATS[self]


class Format(enum.IntEnum):
    """Kinds of printf conversion allowed in descriptions."""

    NONE = 0
    NUM = 1
    STR = 2
    QUAD = 3
    FLOAT = 4
    DOUBLE = 5


class MagicFlag(enum.IntFlag):
    """Flags on a magic entry."""

    NONE = 0
    INDIR = 0x01
    OFFADD = 0x02
    INDIROFFADD = 0x04
    UNSIGNED = 0x08
    NOSPACE = 0x10
    BINTEST = 0x20
    TEXTTEST = 0x40
    OFFNEGATIVE = 0x80


class StrFlag(enum.IntFlag):
    """String and indirect modifiers."""

    NONE = 0
    COMPACT_WHITESPACE = 1 << 0
    COMPACT_OPTIONAL_WHITESPACE = 1 << 1
    IGNORE_LOWERCASE = 1 << 2
    IGNORE_UPPERCASE = 1 << 3
    REGEX_OFFSET_START = 1 << 4
    TEXTTEST = 1 << 5
    BINTEST = 1 << 6
    PSTRING_1_LE = 1 << 7
    PSTRING_2_BE = 1 << 8
    PSTRING_2_LE = 1 << 9
    PSTRING_4_BE = 1 << 10
    PSTRING_4_LE = 1 << 11
    PSTRING_LENGTH_INCLUDES_ITSELF = 1 << 12
    TRIM = 1 << 13
    FULL_WORD = 1 << 14
    PSTRING_LEN = (PSTRING_1_LE | PSTRING_2_BE | PSTRING_2_LE
                   | PSTRING_4_BE | PSTRING_4_LE)
    # Aliases sharing bits with the flags above.
    INDIRECT_RELATIVE = COMPACT_WHITESPACE
    PSTRING_1_BE = PSTRING_1_LE
    REGEX_LINE_COUNT = PSTRING_4_LE


# Modifier characters that may follow "/" after a string type.
STRING_MODIFIER_CHARS = {
    "W": StrFlag.COMPACT_WHITESPACE,
    "w": StrFlag.COMPACT_OPTIONAL_WHITESPACE,
    "c": StrFlag.IGNORE_LOWERCASE,
    "C": StrFlag.IGNORE_UPPERCASE,
    "s": StrFlag.REGEX_OFFSET_START,
    "b": StrFlag.BINTEST,
    "t": StrFlag.TEXTTEST,
    "T": StrFlag.TRIM,
    "f": StrFlag.FULL_WORD,
    "B": StrFlag.PSTRING_1_LE,
    "H": StrFlag.PSTRING_2_BE,
    "h": StrFlag.PSTRING_2_LE,
    "L": StrFlag.PSTRING_4_BE,
    "l": StrFlag.PSTRING_4_LE,
    "J": StrFlag.PSTRING_LENGTH_INCLUDES_ITSELF,
}
CHAR_INDIRECT_RELATIVE = "r"


class Op(enum.IntEnum):
    """Arithmetic and logical operators applied to values and offsets."""

    AND = 0
    OR = 1
    XOR = 2
    ADD = 3
    MINUS = 4
    MULTIPLY = 5
    DIVIDE = 6
    MODULO = 7


OP_SIGNED = 0x20
OP_INVERSE = 0x40
OP_INDIRECT = 0x80

_OPS = {
    "&": Op.AND,
    "|": Op.OR,
    "^": Op.XOR,
    "+": Op.ADD,
    "-": Op.MINUS,
    "*": Op.MULTIPLY,
    "/": Op.DIVIDE,
    "%": Op.MODULO,
}


class TypeEntry(NamedTuple):
    name: str
    type: MagicType
    format: Format


def _t(name: str, fmt: Format) -> TypeEntry:
    return TypeEntry(name, MagicType[name.upper()], fmt)


_N, _S, _Q, _F, _D, _X = (Format.NUM, Format.STR, Format.QUAD, Format.FLOAT,
                          Format.DOUBLE, Format.NONE)

# Note: "long" means a 4-byte integer regardless of the host's C long.
TYPE_TABLE: tuple[TypeEntry, ...] = (
    _t("invalid", _X), _t("byte", _N), _t("short", _N), _t("default", _X),
    _t("long", _N), _t("string", _S), _t("date", _S), _t("beshort", _N),
    _t("belong", _N), _t("bedate", _S), _t("leshort", _N), _t("lelong", _N),
    _t("ledate", _S), _t("pstring", _S), _t("ldate", _S), _t("beldate", _S),
    _t("leldate", _S), _t("regex", _S), _t("bestring16", _S),
    _t("lestring16", _S), _t("search", _S), _t("medate", _S),
    _t("meldate", _S), _t("melong", _N), _t("quad", _Q), _t("lequad", _Q),
    _t("bequad", _Q), _t("qdate", _S), _t("leqdate", _S), _t("beqdate", _S),
    _t("qldate", _S), _t("leqldate", _S), _t("beqldate", _S),
    _t("float", _F), _t("befloat", _F), _t("lefloat", _F),
    _t("double", _D), _t("bedouble", _D), _t("ledouble", _D),
    _t("leid3", _N), _t("beid3", _N), _t("indirect", _N),
    _t("qwdate", _S), _t("leqwdate", _S), _t("beqwdate", _S),
    _t("name", _X), _t("use", _X), _t("clear", _X), _t("der", _S),
    _t("guid", _S), _t("offset", _Q), _t("bevarint", _S),
    _t("levarint", _S), _t("msdosdate", _S), _t("lemsdosdate", _S),
    _t("bemsdosdate", _S), _t("msdostime", _S), _t("lemsdostime", _S),
    _t("bemsdostime", _S), _t("octal", _S),
)

# Keywords that are not types and cannot take a "u" prefix.
SPECIAL_TABLE: tuple[TypeEntry, ...] = (
    _t("der", _S), _t("name", _S), _t("use", _S), _t("octal", _S),
)

_KEYWORDS = {e.type: e.name for e in TYPE_TABLE}
_FORMATS = {e.type: e.format for e in TYPE_TABLE}

_STRING_TYPES = frozenset({
    MagicType.STRING, MagicType.PSTRING, MagicType.BESTRING16,
    MagicType.LESTRING16, MagicType.REGEX, MagicType.SEARCH,
    MagicType.INDIRECT, MagicType.NAME, MagicType.USE, MagicType.OCTAL,
})

_SIZES: dict[MagicType, int] = {}
for _size, _names in (
    (1, "BYTE"),
    (2, "SHORT LESHORT BESHORT MSDOSDATE BEMSDOSDATE LEMSDOSDATE "
        "MSDOSTIME BEMSDOSTIME LEMSDOSTIME"),
    (4, "LONG LELONG BELONG MELONG DATE LEDATE BEDATE MEDATE LDATE LELDATE "
        "BELDATE MELDATE FLOAT BEFLOAT LEFLOAT BEID3 LEID3"),
    (8, "QUAD BEQUAD LEQUAD QDATE LEQDATE BEQDATE QLDATE LEQLDATE BEQLDATE "
        "QWDATE LEQWDATE BEQWDATE DOUBLE BEDOUBLE LEDOUBLE OFFSET "
        "BEVARINT LEVARINT"),
    (16, "GUID"),
):
    for _name in _names.split():
        _SIZES[MagicType[_name]] = _size

_SIGN_BITS: dict[MagicType, int] = {}
for _bits, _names in (
    (8, "BYTE"),
    (16, "SHORT BESHORT LESHORT"),
    (32, "DATE BEDATE LEDATE MEDATE LDATE BELDATE LELDATE MELDATE LONG "
         "BELONG LELONG MELONG FLOAT BEFLOAT LEFLOAT MSDOSDATE BEMSDOSDATE "
         "LEMSDOSDATE MSDOSTIME BEMSDOSTIME LEMSDOSTIME"),
    (64, "QUAD BEQUAD LEQUAD QDATE QLDATE QWDATE BEQDATE BEQLDATE BEQWDATE "
         "LEQDATE LEQLDATE LEQWDATE DOUBLE BEDOUBLE LEDOUBLE OFFSET "
         "BEVARINT LEVARINT"),
    (0, "STRING PSTRING BESTRING16 LESTRING16 REGEX SEARCH DEFAULT INDIRECT "
        "NAME USE CLEAR DER GUID OCTAL"),
):
    for _name in _names.split():
        _SIGN_BITS[MagicType[_name]] = _bits


Value = Union[int, float, bytes]


@dataclass
class Magic:
    """One line of a magic file: a single test and its description."""

    cont_level: int = 0
    flag: MagicFlag = MagicFlag.NONE
    factor: int = 0
    reln: str = "="
    vallen: int = 0
    type: MagicType = MagicType.INVALID
    in_type: MagicType = MagicType.INVALID
    in_op: int = 0
    mask_op: int = 0
    cond: int = 0
    factor_op: str = FACTOR_OP_NONE
    offset: int = 0
    in_offset: int = 0
    lineno: int = 0
    num_mask: int = 0
    str_range: int = 0
    str_flags: StrFlag = StrFlag.NONE
    value: Value = 0
    desc: str = ""
    mimetype: str = ""
    apple: str = ""
    ext: str = ""
    source: str = field(default="", compare=False)

    @property
    def is_string(self) -> bool:
        return is_string_type(self.type)


def get_type(table: tuple[TypeEntry, ...], text: str) -> tuple[MagicType, str]:
    """Match a type keyword at the start of ``text``.

    Returns the type and the text after the keyword, or INVALID and the text
    unchanged when no keyword in ``table`` is a prefix of it.
    """
    for entry in table:
        if entry.name and text.startswith(entry.name):
            return entry.type, text[len(entry.name):]
    return MagicType.INVALID, text


def get_standard_integer_type(text: str) -> tuple[MagicType, str]:
    """Parse an SUS integer type such as ``d``, ``u2``, ``dL`` or ``uQ``.

    ``text`` starts with ``d`` or ``u``.  Returns INVALID and the text
    unchanged for sizes other than 1, 2, 4 and 8 or unknown letters.
    """
    c1 = text[1:2]
    if c1.isascii() and c1.isalpha():
        letters = {"C": MagicType.BYTE, "S": MagicType.SHORT,
                   "I": MagicType.LONG, "L": MagicType.LONG,
                   "Q": MagicType.QUAD}
        mtype = letters.get(c1)
        if mtype is None:
            return MagicType.INVALID, text
        return mtype, text[2:]
    if c1.isascii() and c1.isdigit():
        c2 = text[2:3]
        if c2.isascii() and c2.isdigit():
            return MagicType.INVALID, text
        sizes = {"1": MagicType.BYTE, "2": MagicType.SHORT,
                 "4": MagicType.LONG, "8": MagicType.QUAD}
        mtype = sizes.get(c1)
        if mtype is None:
            return MagicType.INVALID, text
        return mtype, text[2:]
    return MagicType.LONG, text[1:]


def type_size(mtype: MagicType) -> int | None:
    """Byte width of a numeric type, or None when it has no fixed width."""
    return _SIZES.get(mtype)


def is_string_type(mtype: MagicType) -> bool:
    """True for types whose value is a string rather than a number."""
    return mtype in _STRING_TYPES


def sign_extend(mtype: MagicType, unsigned: bool, value: int) -> int:
    """Interpret ``value`` as a signed integer of the type's width.

    Unsigned entries and string types return the value unchanged.  Raises
    ValueError for a type that cannot be extended.
    """
    if unsigned:
        return value
    bits = _SIGN_BITS.get(mtype)
    if bits is None:
        raise ValueError(f"cannot sign-extend type {mtype!r}")
    if bits == 0:
        return value
    mask = (1 << bits) - 1
    value &= mask
    if value & (1 << (bits - 1)):
        value -= 1 << bits
    return value


def get_op(c: str) -> Op | None:
    """Operator for a character, or None when it is not one."""
    return _OPS.get(c)


def pstring_length_size(str_flags: int) -> int:
    """Width of a Pascal string's length prefix.

    Raises ValueError when the flags name no valid prefix.
    """
    kind = StrFlag(str_flags) & StrFlag.PSTRING_LEN
    if kind == StrFlag.PSTRING_1_LE:
        return 1
    if kind in (StrFlag.PSTRING_2_LE, StrFlag.PSTRING_2_BE):
        return 2
    if kind in (StrFlag.PSTRING_4_LE, StrFlag.PSTRING_4_BE):
        return 4
    raise ValueError(
        f"corrupt magic file (bad pascal string length {int(kind)})")


def pstring_get_length(str_flags: int, data: bytes) -> int:
    """Read the length prefix of a Pascal string from ``data``.

    Raises ValueError for bad flags, short data, or a self-inclusive length
    smaller than its own prefix.
    """
    kind = StrFlag(str_flags) & StrFlag.PSTRING_LEN
    size = pstring_length_size(str_flags)
    if len(data) < size:
        raise ValueError("data too short for pascal string length")
    order = "little"
    if kind in (StrFlag.PSTRING_2_BE, StrFlag.PSTRING_4_BE):
        order = "big"
    length = int.from_bytes(data[:size], order)
    if str_flags & StrFlag.PSTRING_LENGTH_INCLUDES_ITSELF:
        length -= size
        if length < 0:
            raise ValueError("pascal string length smaller than its prefix")
    return length


def varint_to_int(data: bytes, mtype: MagicType) -> tuple[int, int]:
    """Decode a variable-length integer of type BEVARINT or LEVARINT.

    Returns the value and the number of bytes it took.  A NUL byte or the
    end of the data stops the scan.
    """
    def at(i: int) -> int:
        return data[i] if i < len(data) else 0

    x = 0
    if mtype == MagicType.LEVARINT:
        end = 0
        while at(end) and at(end) & 0x80:
            end += 1
        for i in range(end, -1, -1):
            x |= at(i) & 0x7F
            x = (x << 7) & _U64
        return x, end + 1

    i = 0
    while at(i):
        x |= at(i) & 0x7F
        if not at(i) & 0x80:
            break
        x = (x << 7) & _U64
        i += 1
    return x, i + 1