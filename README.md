# fileid

Tools for reading magic pattern files, the line-oriented rule files used to
recognise file types from their contents, together with helpers that
describe plain text and convert Composite Document File timestamps.

## Modules

- `fileid.magic_types`: the value types a test can read (`MagicType`), their
  printf formats (`Format`), entry flags (`MagicFlag`, `StrFlag`) and the
  `Magic` dataclass for one test line. Helpers: `get_type`,
  `get_standard_integer_type`, `type_size`, `is_string_type`,
  `sign_extend`, `get_op`, `pstring_length_size`, `pstring_get_length` and
  `varint_to_int`.
- `fileid.magic_strings`: reading escaped string values (`get_string`),
  numeric, float and GUID values (`get_value`), size suffixes (`eat_size`),
  rendering bytes with C escapes (`show_string`) and checking the printf
  conversion in a description (`check_format`, `check_format_type`).
  Problems raise `MagicParseError`, a subclass of `ValueError`.
- `fileid.magic_parse`: `MagicParser` turns lines into `MagicEntry` objects
  (a top-level test plus its `>` continuations). `parse` returns `False`
  when a line starts a new top-level test and the entry already holds one;
  `parse_mime`, `parse_apple`, `parse_ext` and `parse_strength` apply the
  `!:` annotations. Warnings are collected in `MagicParser.warnings`.
- `fileid.magic_db`: `load_magic` loads one or more magic files or
  directories (separated by `os.pathsep`) into a `MagicDatabase`, with
  entries ordered by `magic_strength` through `sort_entries`.
  `MagicDatabase.find_name` returns a named test with its continuations
  (raising `KeyError` if absent) and `list_patterns` lists the tests in the
  order they are tried. `nonmagic` and `set_test_type` are also available.
- `fileid.textinfo`: `scan_text` counts line terminators and notes long
  lines, escape sequences and overstriking in a `TextStats`;
  `describe_text` builds a description such as
  `ASCII text, with CRLF line terminators`. Also `trim_nuls` and
  `encode_utf8`.
- `fileid.cdf_time`: `timestamp_to_timespec` converts a CDF timestamp to
  `(seconds, nanoseconds)` since the Unix epoch and `cdf_ctime` formats
  seconds like `ctime(3)` in UTC.
- `fileid.buffer`: `Buffer` holds data read from the start of a file;
  `Buffer.fill` reads an equal amount from the end of the file through its
  descriptor.

## Installation

```
pip install .
```

## Command line

List the patterns of a magic file or directory in the order they are tried:

```
fileid-magic path/to/magic
```

For each set, binary and text patterns are listed, one line per top-level
test with its strength, line number, description and MIME type. Parse
warnings go to standard error; load errors give exit status 1.

## Library use

```python
from fileid.magic_db import load_magic

db = load_magic("path/to/magic")
for line in db.list_patterns():
    print(line)
```

```python
from fileid.textinfo import describe_text

print(describe_text(b"hello\r\nworld\r\n", "ASCII", "text"))
# ASCII text, with CRLF line terminators
```

`describe_text` takes a sequence of code points (bytes work too), the name
of the encoding and the kind of text; it returns `None` when the kind is
`binary`.

## What it does not do

- It does not identify files: there is no matching of data against a
  loaded database.
- It does not read or write compiled (`.mgc`) magic databases; magic files
  are always parsed from their text.
- It does not detect character encodings; the caller supplies the encoding
  name and decoded code points to `describe_text`.
- Of Composite Document Files it handles only timestamps, not the document
  structure.

## Running the tests

```
pip install .[test]
pytest
```