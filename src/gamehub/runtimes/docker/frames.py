"""Docker log stream framing.

Non-TTY containers multiplex stdout/stderr with an 8-byte header per
frame: [stream, 0, 0, 0, size(4 bytes, big endian)]. TTY containers
return the raw byte stream.
"""

import struct

_HEADER_SIZE = 8
_STREAM_IDS = (0, 1, 2)


def _looks_multiplexed(data: bytes) -> bool:
    return (
        len(data) >= _HEADER_SIZE
        and data[0] in _STREAM_IDS
        and data[1:4] == b"\x00\x00\x00"
    )


def demux(data: bytes) -> bytes:
    """Strip multiplexing headers, concatenating payloads in order."""
    if not _looks_multiplexed(data):
        return data

    out = bytearray()
    offset = 0
    while offset + _HEADER_SIZE <= len(data):
        (size,) = struct.unpack(">I", data[offset + 4 : offset + _HEADER_SIZE])
        start = offset + _HEADER_SIZE
        out += data[start : start + size]
        offset = start + size
    return bytes(out)


def split_lines(data: bytes, tail: int | None = None) -> list[str]:
    """Decode demultiplexed log bytes into lines, keeping the last `tail`."""
    text = demux(data).decode("utf-8", errors="replace")
    lines = [line.rstrip("\r") for line in text.split("\n")]
    if lines and lines[-1] == "":
        lines.pop()
    if tail is not None:
        lines = lines[-tail:] if tail > 0 else []
    return lines
