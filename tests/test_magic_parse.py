import pytest

from fileid.magic_parse import MagicEntry, MagicParser
from fileid.magic_strings import MagicParseError
from fileid.magic_types import (
    APPLE_SIZE,
    MAXDESC,
    MAXMIME,
    MagicFlag,
    MagicType,
    Op,
    StrFlag,
    pstring_length_size,
)


def parse_entry(*lines, parser=None):
    parser = parser or MagicParser()
    entry = MagicEntry()
    for n, line in enumerate(lines, 1):
        assert parser.parse(entry, line, n, "test") is True
    return entry


def test_simple_string():
    m = parse_entry("0 string PK\\003\\004 Zip archive data").magics[0]
    assert m.type == MagicType.STRING
    assert m.value == b"PK\x03\x04"
    assert m.vallen == len(b"PK\x03\x04")
    assert m.desc == "Zip archive data"
    assert m.offset == 0
    assert m.lineno == 1


def test_new_top_level_returns_false():
    parser = MagicParser()
    entry = parse_entry("0 byte 1 one", parser=parser)
    assert parser.parse(entry, "0 byte 2 two", 2) is False
    assert entry.cont_count == 1


def test_continuation_appended():
    entry = parse_entry("0 byte 1 top", ">4 byte 2 sub")
    assert entry.cont_count == 2
    assert entry.magics[1].cont_level == 1
    assert entry.magics[1].offset == 4


def test_continuation_without_entry():
    with pytest.raises(MagicParseError):
        MagicParser().parse(MagicEntry(), ">4 byte 1 x")


def test_level_jump_warns():
    parser = MagicParser()
    entry = parse_entry("0 byte 1 top", parser=parser)
    assert parser.parse(entry, ">>4 byte 1 deep") is True
    assert any("continuation level" in w for w in parser.warnings)


def test_unsigned_byte():
    m = parse_entry("0 ubyte 0x80 high").magics[0]
    assert m.flag & MagicFlag.UNSIGNED
    assert m.value == 0x80


def test_signed_byte_extends():
    m = parse_entry("0 byte 0xff all ones").magics[0]
    assert not m.flag & MagicFlag.UNSIGNED
    assert m.value == -1


def test_indirect_offset():
    entry = parse_entry("0 byte 1 top", ">(4.l+8) byte 1 x")
    m = entry.magics[1]
    assert m.flag & MagicFlag.INDIR
    assert m.in_type == MagicType.LELONG
    assert m.in_op == Op.ADD
    assert m.in_offset == 8
    assert m.offset == 4


@pytest.mark.parametrize("line", [">(4.z) byte 1 x", ">(4.l byte 1 x"])
def test_bad_indirect_is_removed(line):
    entry = parse_entry("0 byte 1 top")
    with pytest.raises(MagicParseError):
        MagicParser().parse(entry, line)
    assert entry.cont_count == 1


def test_relative_offset_at_level_zero():
    with pytest.raises(MagicParseError, match="relative offset"):
        MagicParser().parse(MagicEntry(), "&4 byte 1 x")


def test_bad_offset():
    with pytest.raises(MagicParseError, match="offset"):
        MagicParser().parse(MagicEntry(), "foo byte 1 x")


def test_mask_operator():
    m = parse_entry("0 ubelong&0xffff0000 0x7f450000 masked").magics[0]
    assert m.mask_op == Op.AND
    assert m.num_mask == 0xffff0000
    assert m.value == 0x7f450000


@pytest.mark.parametrize("line,reln", [
    ("0 byte >1 gt", ">"),
    ("0 byte !0 nz", "!"),
    ("0 long x any", "x"),
    ("0 byte &1 bit", "&"),
])
def test_relations(line, reln):
    assert parse_entry(line).magics[0].reln == reln


def test_ge_rejected_when_checking():
    with pytest.raises(MagicParseError):
        MagicParser().parse(MagicEntry(), "0 byte >=1 x")


def test_ge_accepted_without_check():
    m = parse_entry("0 byte >=1 x", parser=MagicParser(check=False)).magics[0]
    assert m.reln == ">"
    assert m.value == 1


def test_string_modifiers():
    m = parse_entry("0 string/cW foo x").magics[0]
    assert m.str_flags & StrFlag.IGNORE_LOWERCASE
    assert m.str_flags & StrFlag.COMPACT_WHITESPACE
    assert m.value == b"foo"


def test_search_range():
    m = parse_entry("0 search/100 foo x").magics[0]
    assert m.str_range == 100


@pytest.mark.parametrize("line", [
    "0 search/c foo x",
    "0 lestring16/c foo x",
    "0 string/s foo x",
    "0 regex/W foo x",
    "0 string/H foo x",
    "0 string/q foo x",
])
def test_bad_string_modifiers(line):
    with pytest.raises(MagicParseError):
        MagicParser().parse(MagicEntry(), line)


def test_pstring_length_modifier():
    m = parse_entry("0 pstring/H abc x").magics[0]
    assert m.str_flags & StrFlag.PSTRING_LEN == StrFlag.PSTRING_2_BE
    assert m.vallen == len(b"abc") + pstring_length_size(m.str_flags)


def test_indirect_relative():
    m = parse_entry("0 indirect/r x").magics[0]
    assert m.str_flags & StrFlag.INDIRECT_RELATIVE
    assert m.reln == "x"


def test_indirect_bad_modifier():
    with pytest.raises(MagicParseError):
        MagicParser().parse(MagicEntry(), "0 indirect/q x")


@pytest.mark.parametrize("line,mtype,unsigned", [
    ("0 d2 1 x", MagicType.SHORT, False),
    ("0 u4 1 x", MagicType.LONG, True),
    ("0 dC 1 x", MagicType.BYTE, False),
    ("0 s foo x", MagicType.STRING, False),
])
def test_standard_types(line, mtype, unsigned):
    m = parse_entry(line).magics[0]
    assert m.type == mtype
    assert bool(m.flag & MagicFlag.UNSIGNED) == unsigned


def test_invalid_type():
    with pytest.raises(MagicParseError, match="type"):
        MagicParser().parse(MagicEntry(), "0 bogus 1 x")


def test_name_only_at_top_level():
    entry = parse_entry("0 name foo")
    assert entry.magics[0].type == MagicType.NAME
    assert entry.magics[0].value == b"foo"
    with pytest.raises(MagicParseError, match="top level"):
        MagicParser().parse(entry, ">0 name bar")


def test_description_truncated():
    parser = MagicParser()
    m = parse_entry("0 byte 1 " + "x" * 100, parser=parser).magics[0]
    assert m.desc == "x" * (MAXDESC - 1)
    assert any("truncated" in w for w in parser.warnings)


def test_empty_description_records_source():
    m = parse_entry("0 byte 1").magics[0]
    assert m.desc == ""
    assert m.source == "test"


def test_nospace():
    m = parse_entry("0 byte 1 \\b, more").magics[0]
    assert m.flag & MagicFlag.NOSPACE
    assert m.desc == ", more"


def test_format_checked():
    m = parse_entry("0 byte x value %d").magics[0]
    assert m.desc == "value %d"
    with pytest.raises(MagicParseError):
        MagicParser().parse(MagicEntry(), "0 byte x value %s")


def test_strength():
    parser = MagicParser()
    entry = parse_entry("0 string foo bar", parser=parser)
    parser.parse_strength(entry, " +20")
    assert entry.magics[0].factor_op == "+"
    assert entry.magics[0].factor == 20
    with pytest.raises(MagicParseError, match="already"):
        parser.parse_strength(entry, " +1")


@pytest.mark.parametrize("line", [" 20", " /0", " +300", " +2z"])
def test_strength_errors_reset(line):
    parser = MagicParser()
    entry = parse_entry("0 string foo bar", parser=parser)
    with pytest.raises(MagicParseError):
        parser.parse_strength(entry, line)
    assert entry.magics[0].factor_op == ""
    assert entry.magics[0].factor == 0


def test_strength_on_name():
    parser = MagicParser()
    entry = parse_entry("0 name foo", parser=parser)
    with pytest.raises(MagicParseError, match="name"):
        parser.parse_strength(entry, " +1")


def test_mime():
    parser = MagicParser()
    entry = parse_entry("0 string PK Zip", parser=parser)
    parser.parse_mime(entry, " application/zip")
    assert entry.magics[0].mimetype == "application/zip"
    with pytest.raises(MagicParseError, match="already"):
        parser.parse_mime(entry, " application/other")


def test_mime_needs_description():
    parser = MagicParser()
    entry = parse_entry("0 byte 1", parser=parser)
    with pytest.raises(MagicParseError, match="description"):
        parser.parse_mime(entry, " text/plain")


def test_mime_truncated():
    parser = MagicParser()
    entry = parse_entry("0 byte 1 x", parser=parser)
    parser.parse_mime(entry, " " + "a" * 100)
    assert entry.magics[0].mimetype == "a" * (MAXMIME - 1)
    assert any("truncated" in w for w in parser.warnings)


def test_apple_and_ext():
    parser = MagicParser()
    entry = parse_entry("0 byte 1 x", ">1 byte 2 y", parser=parser)
    parser.parse_apple(entry, " APPLTEXT")
    parser.parse_ext(entry, " zip,jar")
    assert entry.magics[1].apple == "APPLTEXT"
    assert entry.magics[1].ext == "zip,jar"
    assert entry.magics[0].apple == ""


def test_apple_keeps_full_size():
    parser = MagicParser()
    entry = parse_entry("0 byte 1 x", parser=parser)
    parser.parse_apple(entry, " ABCDEFGHIJ")
    assert entry.magics[0].apple == "ABCDEFGHIJ"[:APPLE_SIZE]


def test_extra_empty_is_error():
    parser = MagicParser()
    entry = parse_entry("0 byte 1 x", parser=parser)
    with pytest.raises(MagicParseError, match="Bad magic entry"):
        parser.parse_ext(entry, " ")


def test_annotation_without_entry():
    with pytest.raises(MagicParseError):
        MagicParser().parse_mime(MagicEntry(), " text/plain")