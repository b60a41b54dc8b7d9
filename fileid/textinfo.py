"""Description of text data: line terminators, long lines and escapes."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

MAXLINELEN = 300  # longest sane line length

_NL = 0x0A
_CR = 0x0D
_NEL = 0x85
_ESC = 0x1B
_BS = 0x08

_UTF8_RANGES = (
    (0x7F, 1, 0x00),
    (0x7FF, 2, 0xC0),
    (0xFFFF, 3, 0xE0),
    (0x1FFFFF, 4, 0xF0),
    (0x3FFFFFF, 5, 0xF8),
    (0x7FFFFFFF, 6, 0xFC),
)


def trim_nuls(buf: bytes) -> bytes:
    """Strip trailing NUL bytes, but always leave at least one byte."""
    end = len(buf)
    while end > 1 and buf[end - 1] == 0:
        end -= 1
    return buf[:end]


def encode_utf8(chars: Sequence[int]) -> bytes:
    """Encode code points as UTF-8, allowing the historic 5- and 6-byte forms.

    Raises ValueError for a code point above 0x7fffffff.
    """
    out = bytearray()
    for c in chars:
        if c < 0:
            raise ValueError(f"invalid character {c:#x}")
        for limit, count, lead in _UTF8_RANGES:
            if c <= limit:
                break
        else:
            raise ValueError(f"invalid character {c:#x}")
        if count == 1:
            out.append(c)
            continue
        out.append(((c >> (6 * (count - 1))) + lead) & 0xFF)
        out.extend(((c >> (6 * k)) & 0x3F) + 0x80
                   for k in range(count - 2, -1, -1))
    return bytes(out)


@dataclass(frozen=True)
class TextStats:
    """What a scan of decoded text found."""

    n_crlf: int = 0
    n_lf: int = 0
    n_cr: int = 0
    n_nel: int = 0
    has_escapes: bool = False
    has_backspace: bool = False
    long_line_length: int = 0

    @property
    def terminators(self) -> list[str]:
        """Names of the line terminators seen, in reporting order."""
        found = (("CRLF", self.n_crlf), ("CR", self.n_cr),
                 ("LF", self.n_lf), ("NEL", self.n_nel))
        return [name for name, count in found if count]

    def describe_terminators(self) -> str:
        """Terminator phrase, empty when only LF line ends were seen."""
        names = self.terminators
        if names == ["LF"]:
            return ""
        listed = ", ".join(names) if names else "no"
        return f", with {listed} line terminators"


def scan_text(chars: Sequence[int]) -> TextStats:
    """Count line terminators and note long lines, escapes and overstriking."""
    n_crlf = n_lf = n_cr = n_nel = 0
    has_escapes = has_backspace = False
    seen_cr = False
    last_line_end = -1
    longest = 0

    for i, c in enumerate(chars):
        if c == _NL:
            if seen_cr:
                n_crlf += 1
            else:
                n_lf += 1
            last_line_end = i
        elif seen_cr:
            n_cr += 1

        seen_cr = c == _CR
        if seen_cr:
            last_line_end = i

        if c == _NEL:
            n_nel += 1
            last_line_end = i

        if i > last_line_end + MAXLINELEN:
            longest = max(longest, i - last_line_end)

        if c == _ESC:
            has_escapes = True
        if c == _BS:
            has_backspace = True

    return TextStats(n_crlf, n_lf, n_cr, n_nel, has_escapes, has_backspace,
                     longest)


def _merge_prior(prior: str) -> tuple[str, bool]:
    """Fold a previous description into the text one; report 'executable'."""
    if not prior:
        return "", False
    merged, n = re.subn(r" text\Z", ", ", prior, count=1)
    if n:
        return merged, False
    merged, n = re.subn(r" text executable\Z", ", ", prior, count=1)
    if n:
        return merged, True
    return prior + ", ", False


def describe_text(chars: Sequence[int], code: str, text_type: str,
                  prior: str = "") -> str | None:
    """Describe decoded text, e.g. ``ASCII text, with CRLF line terminators``.

    ``code`` names the encoding, ``text_type`` is the kind of text found and
    ``prior`` is any description already produced for the data.  Returns
    None when the data is not text after all.
    """
    stats = scan_text(chars)
    if text_type == "binary":
        return None

    head, executable = _merge_prior(prior)
    parts = [head, code, " ", text_type]
    if executable:
        parts.append(" executable")
    if stats.long_line_length:
        parts.append(f", with very long lines ({stats.long_line_length})")
    parts.append(stats.describe_terminators())
    if stats.has_escapes:
        parts.append(", with escape sequences")
    if stats.has_backspace:
        parts.append(", with overstriking")
    return "".join(parts)