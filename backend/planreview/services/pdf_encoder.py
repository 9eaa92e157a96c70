"""
Minimal single-page PDF 1.4 writer.

Plain text lines become one Letter-sized page set in Helvetica 12pt. The
output depends only on the input lines: no timestamps, no random ids, so
identical input gives byte-identical documents.
"""

from __future__ import annotations

from typing import Iterable

WRAP_COLUMNS = 90
FONT_NAME = "F1"
FONT_SIZE = 12
LEADING = 14
TEXT_ORIGIN = (72, 750)
MEDIA_BOX = (0, 0, 612, 792)
TEXT_ENCODING = "cp1252"

HEADER = b"%PDF-1.4\n"


def wrap_line(text: str, width: int = WRAP_COLUMNS) -> list[str]:
    """Split a line into fixed-width chunks. An empty line stays one empty line."""
    chunks: list[str] = []
    remaining = text
    while len(remaining) > width:
        chunks.append(remaining[:width])
        remaining = remaining[width:]
    if remaining or not chunks:
        chunks.append(remaining)
    return chunks


def wrap_lines(lines: Iterable[str], width: int = WRAP_COLUMNS) -> list[str]:
    wrapped: list[str] = []
    for line in lines:
        # Line breaks inside a value would otherwise end up inside a PDF string.
        for segment in line.splitlines() or [""]:
            wrapped.extend(wrap_line(segment, width))
    return wrapped


def escape_text(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def build_content_stream(lines: list[str]) -> bytes:
    commands = [
        "BT",
        f"/{FONT_NAME} {FONT_SIZE} Tf",
        f"{LEADING} TL",
        f"{TEXT_ORIGIN[0]} {TEXT_ORIGIN[1]} Td",
    ]
    for index, line in enumerate(lines):
        if index > 0:
            commands.append("T*")
        commands.append(f"({escape_text(line)}) Tj")
    commands.append("ET")
    return "\n".join(commands).encode(TEXT_ENCODING, errors="replace")


class PdfDocumentBuilder:
    """Collects object bodies in order, then writes header, objects, xref and trailer in one pass."""

    def __init__(self) -> None:
        self._objects: list[bytes] = []

    def add_object(self, body: bytes | str) -> int:
        if isinstance(body, str):
            body = body.encode("ascii")
        self._objects.append(body)
        return len(self._objects)

    def add_stream(self, data: bytes) -> int:
        body = b"<< /Length %d >>\nstream\n" % len(data) + data + b"\nendstream"
        return self.add_object(body)

    def build(self, root: int = 1) -> bytes:
        out = bytearray(HEADER)
        offsets: list[int] = []
        for number, body in enumerate(self._objects, start=1):
            offsets.append(len(out))
            out += b"%d 0 obj\n" % number
            out += body
            out += b"\nendobj\n"

        xref_offset = len(out)
        size = len(self._objects) + 1
        out += b"xref\n0 %d\n" % size
        out += b"0000000000 65535 f \n"
        for offset in offsets:
            out += b"%010d 00000 n \n" % offset
        out += b"trailer\n<< /Size %d /Root %d 0 R >>\n" % (size, root)
        out += b"startxref\n%d\n%%%%EOF\n" % xref_offset
        return bytes(out)


def encode(lines: Iterable[str]) -> bytes:
    """Render text lines as a one-page PDF document."""
    stream = build_content_stream(wrap_lines(lines))

    builder = PdfDocumentBuilder()
    builder.add_object("<< /Type /Catalog /Pages 2 0 R >>")
    builder.add_object("<< /Type /Pages /Kids [3 0 R] /Count 1 >>")
    builder.add_object(
        "<< /Type /Page /Parent 2 0 R /MediaBox [%d %d %d %d] /Contents 4 0 R "
        "/Resources << /Font << /%s 5 0 R >> >> >>" % (*MEDIA_BOX, FONT_NAME)
    )
    builder.add_stream(stream)
    builder.add_object("<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica /Encoding /WinAnsiEncoding >>")
    return builder.build(root=1)
