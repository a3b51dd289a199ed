"""
SingleSign Canonical Document Boundary Scanner

Splits a blob of concatenated JSON objects into byte ranges, one per top-level
object, without parsing the objects themselves.

    {"a":1}{"b":{"c":2}}  ->  [ByteRange(0, 7), ByteRange(7, 20)]

Offsets are UTF-8 byte offsets into the blob, end exclusive. Anything between
top-level objects (whitespace, newlines) is skipped and belongs to no range.

FAIL-CLOSED: an unmatched "}" or an unclosed "{" rejects the whole blob.
No partial range list is ever returned.
"""

from dataclasses import dataclass
from typing import List, Union

from singlesign_canonical.errors import ParseError


@dataclass(frozen=True)
class ByteRange:
    """Half-open [start, end) byte range into a blob."""

    start: int
    end: int

    def validate(self, length: int) -> None:
        if not (0 <= self.start <= self.end <= length):
            raise ParseError(
                f"Range [{self.start}, {self.end}) out of bounds for blob of {length} bytes"
            )

    def slice(self, blob: bytes) -> bytes:
        self.validate(len(blob))
        return bytes(blob[self.start:self.end])

    def __len__(self) -> int:
        return self.end - self.start


def _utf8_width(ch: str) -> int:
    cp = ord(ch)
    if cp < 0x80:
        return 1
    if cp < 0x800:
        return 2
    if cp < 0x10000:
        return 3
    return 4


def find_concatenated_json_ranges(blob: Union[str, bytes]) -> List[ByteRange]:
    """
    Find byte ranges of concatenated JSON objects by matching braces.

    - Handles nested objects (only depth 0 -> 1 and 1 -> 0 open/close a range)
    - Ignores braces inside JSON strings, honouring backslash escapes

    Args:
        blob: Text, or UTF-8 bytes, holding zero or more JSON objects

    Returns:
        Ranges in increasing order of start

    Raises:
        ParseError: Unmatched closing brace, unclosed object, or invalid UTF-8
    """
    if isinstance(blob, (bytes, bytearray, memoryview)):
        try:
            text = bytes(blob).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"Blob is not valid UTF-8: {e}") from e
    else:
        text = blob

    ranges: List[ByteRange] = []
    depth = 0
    in_string = False
    escaped = False
    start = 0
    idx = 0

    for ch in text:
        width = _utf8_width(ch)

        if in_string:
            if escaped:
                # Escaped character is never interpreted
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = idx
            depth += 1
        elif ch == "}":
            if depth == 0:
                raise ParseError(f"Unmatched closing brace at byte {idx}")
            depth -= 1
            if depth == 0:
                ranges.append(ByteRange(start, idx + width))

        idx += width

    if depth != 0:
        raise ParseError(f"Unclosed JSON object(s); brace depth at end is {depth}")

    return ranges
