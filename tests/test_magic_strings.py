import math
import uuid

import pytest

from fileid.magic_strings import (
    MagicParseError,
    check_format,
    check_format_type,
    eat_size,
    get_string,
    get_value,
    hex_to_int,
    show_string,
)
from fileid.magic_types import MAXSTRING, Magic, MagicFlag, MagicType, StrFlag


def test_hex_to_int_digits_and_rejects():
    for c in "0123456789abcdefABCDEF":
        assert hex_to_int(c) == int(c, 16)
    for c in "gG x-":
        assert hex_to_int(c) is None


def test_eat_size_skips_suffix():
    text = "10UL rest"
    assert eat_size(text, 2) == len("10UL")
    assert eat_size("10 rest", 2) == 2


def test_get_string_stops_at_whitespace():
    m = Magic(type=MagicType.STRING)
    text = "abc def"
    end = get_string(m, text, 0)
    assert end == text.index(" ")
    assert m.value == b"abc"
    assert m.vallen == len(b"abc")


@pytest.mark.parametrize("text", ["a\\nb\\tc\\001", "x\\r\\v\\f", "\\177z"])
def test_escape_round_trip(text):
    m = Magic(type=MagicType.STRING)
    assert get_string(m, text, 0) == len(text)
    assert show_string(m.value) == text


def test_hex_escape_matches_plain_char():
    a = Magic(type=MagicType.STRING)
    b = Magic(type=MagicType.STRING)
    get_string(a, "\\x41", 0)
    get_string(b, "A", 0)
    assert a.value == b.value


def test_escaped_space_is_kept():
    m = Magic(type=MagicType.STRING)
    text = "a\\ b rest"
    end = get_string(m, text, 0)
    assert m.value == b"a b"
    assert text[end:] == " rest"


def test_string_too_long():
    m = Magic(type=MagicType.STRING)
    with pytest.raises(MagicParseError, match="too long"):
        get_string(m, "a" * (MAXSTRING + 10), 0)


def test_max_length_string_fits():
    m = Magic(type=MagicType.STRING)
    text = "a" * (MAXSTRING - 1)
    get_string(m, text, 0)
    assert m.vallen == MAXSTRING - 1


def test_pstring_vallen_includes_prefix():
    m = Magic(type=MagicType.PSTRING, str_flags=StrFlag.PSTRING_2_BE)
    get_string(m, "ab", 0)
    assert m.vallen == len(b"ab") + 2


def test_unneeded_escape_warns():
    m = Magic(type=MagicType.STRING)
    with pytest.warns(UserWarning, match="no need to escape"):
        get_string(m, "\\q", 0, True)
    assert m.value == b"q"


def test_incomplete_escape():
    m = Magic(type=MagicType.STRING)
    text = "ab\\"
    with pytest.warns(UserWarning, match="incomplete escape"):
        end = get_string(m, text, 0, True)
    assert end == len(text)
    assert m.value == b"ab"


def test_show_string_control_letters():
    assert show_string(b"\x07\x08") == "\\a\\b"


def test_check_format_type_valid_returns_rest():
    assert check_format_type("d bytes", MagicType.LONG) == " bytes"
    assert check_format_type("c", MagicType.BYTE) == ""
    assert check_format_type("lld", MagicType.QUAD) == ""
    assert check_format_type("-10.3s!", MagicType.STRING) == "!"
    assert check_format_type(".3f", MagicType.DOUBLE) == ""


@pytest.mark.parametrize("fmt,mtype", [
    ("c", MagicType.LONG),
    ("d", MagicType.QUAD),
    ("d", MagicType.STRING),
    ("s", MagicType.FLOAT),
])
def test_check_format_type_invalid(fmt, mtype):
    with pytest.raises(MagicParseError, match="not valid"):
        check_format_type(fmt, mtype)


def test_check_format_type_missing_and_too_long():
    with pytest.raises(MagicParseError, match="missing format spec"):
        check_format_type("", MagicType.LONG)
    with pytest.raises(MagicParseError, match="too long"):
        check_format_type("123456d", MagicType.LONG)
    with pytest.raises(MagicParseError, match="too long"):
        check_format_type("2000d", MagicType.LONG)


def test_check_format():
    assert check_format(Magic(type=MagicType.LONG, desc="size %d")) is True
    assert check_format(Magic(type=MagicType.LONG, desc="plain")) is False
    with pytest.raises(MagicParseError, match="Too many"):
        check_format(Magic(type=MagicType.LONG, desc="%d %d"))
    with pytest.raises(MagicParseError, match="No format string"):
        check_format(Magic(type=MagicType.NAME, desc="x %s"))
    with pytest.raises(MagicParseError, match="Printf format"):
        check_format(Magic(type=MagicType.STRING, desc="x %d"))


def test_get_value_numbers():
    m = Magic(type=MagicType.BYTE)
    text = "0x7f rest"
    assert get_value(m, text, 0) == text.index(" ")
    assert m.value == 0x7F

    m = Magic(type=MagicType.BYTE)
    get_value(m, "-1", 0)
    assert m.value == -1

    m = Magic(type=MagicType.LONG, flag=MagicFlag.UNSIGNED)
    get_value(m, "010", 0)
    assert m.value == 0o10


def test_get_value_size_suffix():
    m = Magic(type=MagicType.LONG)
    text = "10UL rest"
    assert get_value(m, text, 0) == text.index(" ")
    assert m.value == 10


def test_get_value_errors():
    with pytest.raises(MagicParseError, match="Overflow"):
        get_value(Magic(type=MagicType.BYTE), "256", 0)
    with pytest.raises(MagicParseError, match="Unparsable"):
        get_value(Magic(type=MagicType.LONG), "abc", 0)
    with pytest.raises(MagicParseError, match="regex"):
        get_value(Magic(type=MagicType.REGEX), "(", 0)


def test_get_value_string_and_x():
    m = Magic(type=MagicType.STRING)
    text = "PK\\003\\004 zip"
    end = get_value(m, text, 0)
    assert text[end:] == " zip"
    assert show_string(m.value) == text[:end]

    m = Magic(type=MagicType.LONG, reln="x")
    assert get_value(m, "whatever", 3) == 3


def test_get_value_guid():
    guid = "12345678-1234-5678-9abc-def012345678"
    m = Magic(type=MagicType.GUID)
    assert get_value(m, guid + " x", 0) == len(guid)
    assert m.value == uuid.UUID(guid).bytes
    with pytest.raises(MagicParseError):
        get_value(Magic(type=MagicType.GUID), "not-a-guid", 0)