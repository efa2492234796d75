"""
ID3v2.3 / ID3v2.4 tag block codec.

Parses a tag block into frames and writes it back byte for byte. Unlike
general purpose tag libraries, the codec accepts the .xm variant of the
comment-style frames, which store a 2-byte language code where ID3v2
requires 3 bytes, and keeps every field width as read so that an untouched
block serialises to the exact bytes it was parsed from.
"""

import logging
import struct
from dataclasses import dataclass, field
from typing import Iterator, Optional

from xm_decryptor.const import (
    FLAG_EXTENDED_HEADER,
    FLAG_FOOTER,
    FLAG_UNSYNCHRONISATION,
    ID3_FOOTER_MAGIC,
    ID3_FOOTER_SIZE,
    ID3_FRAME_HEADER_SIZE,
    ID3_HEADER_SIZE,
    ID3_MAGIC,
    LANGUAGE_FRAME_IDS,
    SUPPORTED_ID3_VERSIONS,
)
from xm_decryptor.id3 import unsynch
from xm_decryptor.id3.frames import (
    FRAME_ID_PATTERN,
    Frame,
    LanguageFrame,
    TextFrame,
    detect_language_width,
    has_opaque_payload,
    make_frame,
)

logger = logging.getLogger(__name__)

# Width used when no language frame gives it away
DEFAULT_LANGUAGE_WIDTH = 2


class TagError(Exception):
    """Base exception for tag block parsing."""

    pass


class BadMagic(TagError):
    """The block does not start with a supported ID3v2 header."""

    pass


class TruncatedFrame(TagError):
    """The buffer ends before the declared tag block or one of its frames."""

    pass


class SizeMismatch(TagError):
    """The frames and padding do not add up to the declared block size."""

    pass


class DuplicateFrame(TagError):
    """A frame identifier occurs more than once in the block."""

    pass


@dataclass
class TagHeader:
    version: int
    revision: int
    flags: int
    size: int

    @property
    def has_footer(self) -> bool:
        return self.version == 4 and bool(self.flags & FLAG_FOOTER)

    @property
    def total_size(self) -> int:
        """Size of the whole tag block including header and footer."""
        return ID3_HEADER_SIZE + self.size + (ID3_FOOTER_SIZE if self.has_footer else 0)


@dataclass
class TagBlock:
    """
    A parsed ID3v2 tag block.

    Attributes:
        version (int): Major version, 3 or 4.
        revision (int): Revision byte from the header.
        flags (int): Header flags.
        frames (dict[str, Frame]): Frames keyed by identifier, in block order.
        extended_header (bytes): Raw extended header, empty when absent.
        padding (bytes): Zero padding after the last frame.
        language_width (int): Width of the language code in language frames.
        unsynchronised_body (bytes): The v2.3 body as stored, before unsynchronisation was reversed.
            Written back as is while the frames still match it.
    """

    version: int
    revision: int = 0
    flags: int = 0
    frames: dict[str, Frame] = field(default_factory=dict)
    extended_header: bytes = b""
    padding: bytes = b""
    language_width: int = 3
    unsynchronised_body: bytes = field(default=b"", repr=False, compare=False)

    def __contains__(self, frame_id: str) -> bool:
        return frame_id in self.frames

    def __iter__(self) -> Iterator[Frame]:
        return iter(self.frames.values())

    def __len__(self) -> int:
        return len(self.frames)

    @property
    def has_footer(self) -> bool:
        return self.version == 4 and bool(self.flags & FLAG_FOOTER)

    def get(self, frame_id: str) -> Optional[Frame]:
        return self.frames.get(frame_id)

    def text(self, frame_id: str, default: Optional[str] = None) -> Optional[str]:
        """Return the value of a text frame, or ``default`` when the frame is absent."""
        frame = self.frames.get(frame_id)
        if frame is None:
            return default
        if isinstance(frame, TextFrame):
            return frame.value
        if isinstance(frame, LanguageFrame):
            return frame.text
        raise TypeError(f"Frame {frame_id} does not hold text")

    def set_text(self, frame_id: str, value: str, encoding: Optional[int] = None):
        """Replace or append a text frame, keeping its position and flags when it already exists."""
        existing = self.frames.get(frame_id)
        if isinstance(existing, LanguageFrame):
            existing.text = value
            return
        flags = existing.flags if existing is not None else 0
        if encoding is None and isinstance(existing, TextFrame) and existing.data:
            encoding = existing.encoding
        self.frames[frame_id] = TextFrame.build(frame_id, value, encoding=encoding, flags=flags)

    def remove(self, frame_id: str) -> Optional[Frame]:
        return self.frames.pop(frame_id, None)


def parse_header(data: bytes) -> TagHeader:
    """
    Parse the fixed 10-byte tag header.

    Raises:
        TruncatedFrame: If fewer than 10 bytes are available.
        BadMagic: On a wrong marker, an unsupported version or a corrupt size field.
    """
    if len(data) < ID3_HEADER_SIZE:
        raise TruncatedFrame(f"Tag header needs {ID3_HEADER_SIZE} bytes, got {len(data)}")

    magic, version, revision, flags, size_bytes = struct.unpack_from(">3sBBB4s", data, 0)
    if magic != ID3_MAGIC:
        raise BadMagic(f"Expected {ID3_MAGIC!r} marker, found {bytes(magic)!r}")
    if version not in SUPPORTED_ID3_VERSIONS:
        raise BadMagic(f"Unsupported ID3v2 version 2.{version}")
    if not unsynch.is_synchsafe(size_bytes):
        raise BadMagic(f"Tag size {size_bytes.hex()} is not a synchsafe integer")

    return TagHeader(version, revision, flags, unsynch.decode_synchsafe(size_bytes))


def _read_extended_header(header: TagHeader, body: bytes) -> bytes:
    if len(body) < 4:
        raise SizeMismatch("Extended header does not fit in the declared tag size")

    if header.version == 4:
        try:
            ext_size = unsynch.decode_synchsafe(body[:4])
        except ValueError as e:
            raise SizeMismatch(f"Corrupt extended header size: {e}") from e
        if ext_size < 6:
            raise SizeMismatch(f"Extended header size {ext_size} is below the minimum of 6")
    else:
        # v2.3 excludes the size field itself
        ext_size = struct.unpack_from(">I", body, 0)[0] + 4

    if ext_size > len(body):
        raise SizeMismatch(f"Extended header of {ext_size} bytes overruns the {len(body)} byte tag body")
    return body[:ext_size]


def _read_frames(header: TagHeader, body: bytes, position: int) -> tuple[list[tuple[str, int, bytes]], bytes]:
    raw_frames = []
    end = len(body)

    while position < end:
        if body[position] == 0:
            padding = body[position:]
            if padding.count(0) != len(padding):
                raise SizeMismatch(f"Non-zero bytes in padding at body offset {position}")
            return raw_frames, padding

        if position + ID3_FRAME_HEADER_SIZE > end:
            raise SizeMismatch(
                f"{end - position} stray bytes at body offset {position} do not form a frame header"
            )

        frame_id, size_bytes, flags = struct.unpack_from(">4s4sH", body, position)
        if not FRAME_ID_PATTERN.match(frame_id):
            raise SizeMismatch(f"Invalid frame identifier {bytes(frame_id)!r} at body offset {position}")

        if header.version == 4:
            try:
                frame_size = unsynch.decode_synchsafe(size_bytes)
            except ValueError as e:
                raise SizeMismatch(f"Corrupt size for frame {frame_id.decode()}: {e}") from e
        else:
            frame_size = struct.unpack(">I", size_bytes)[0]

        data_start = position + ID3_FRAME_HEADER_SIZE
        data_end = data_start + frame_size
        if data_end > end:
            raise SizeMismatch(
                f"Frame {frame_id.decode()} of {frame_size} bytes overruns the declared tag size by {data_end - end}"
            )

        raw_frames.append((frame_id.decode("ascii"), flags, body[data_start:data_end]))
        position = data_end

    return raw_frames, b""


def _resolve_language_width(
    version: int, raw_frames: list[tuple[str, int, bytes]], language_width: Optional[int]
) -> int:
    if language_width is not None:
        if language_width not in (2, 3):
            raise ValueError(f"Language code width must be 2 or 3, got {language_width}")
        return language_width

    for frame_id, flags, data in raw_frames:
        if frame_id not in LANGUAGE_FRAME_IDS or has_opaque_payload(version, flags):
            continue
        width = detect_language_width(data)
        if width is not None:
            return width
    return DEFAULT_LANGUAGE_WIDTH


def parse(data: bytes, language_width: Optional[int] = None) -> TagBlock:
    """
    Parse the ID3v2 tag block at the start of ``data``.

    Bytes after the declared block are ignored, so the whole container can be
    passed in.

    Args:
        data (bytes): Buffer starting with the tag header.
        language_width (Optional[int]): Force a 2 or 3 byte language code, None to detect it.

    Returns:
        TagBlock: The parsed block.

    Raises:
        TagError: ``BadMagic``, ``TruncatedFrame``, ``SizeMismatch`` or ``DuplicateFrame``.
    """
    header = parse_header(data)
    if len(data) < header.total_size:
        raise TruncatedFrame(
            f"Tag block declares {header.total_size} bytes but only {len(data)} are available"
        )

    body = bytes(data[ID3_HEADER_SIZE : ID3_HEADER_SIZE + header.size])
    unsynchronised_body = b""
    if header.version == 3 and header.flags & FLAG_UNSYNCHRONISATION:
        unsynchronised_body = body
        body = unsynch.decode(body)

    if header.has_footer:
        footer = data[ID3_HEADER_SIZE + header.size : header.total_size]
        if footer[:3] != ID3_FOOTER_MAGIC:
            raise SizeMismatch(f"Expected footer marker {ID3_FOOTER_MAGIC!r}, found {bytes(footer[:3])!r}")

    extended_header = b""
    if header.flags & FLAG_EXTENDED_HEADER:
        extended_header = _read_extended_header(header, body)

    raw_frames, padding = _read_frames(header, body, len(extended_header))
    width = _resolve_language_width(header.version, raw_frames, language_width)

    frames: dict[str, Frame] = {}
    for frame_id, flags, payload in raw_frames:
        if frame_id in frames:
            raise DuplicateFrame(f"Frame {frame_id} occurs more than once")
        frames[frame_id] = make_frame(header.version, frame_id, flags, payload, width)

    logger.debug(
        "Parsed ID3v2.%d tag: %d frames, %d bytes padding, %d-byte language codes",
        header.version,
        len(frames),
        len(padding),
        width,
    )
    return TagBlock(
        version=header.version,
        revision=header.revision,
        flags=header.flags,
        frames=frames,
        extended_header=extended_header,
        padding=padding,
        language_width=width,
        unsynchronised_body=unsynchronised_body,
    )


def serialize(block: TagBlock) -> bytes:
    """
    Write a tag block back to bytes.

    Frames are written in block order with the field widths they were read
    with, followed by the original padding. An unsynchronised v2.3 body is
    reused as stored unless the frames were edited.
    """
    body = block.extended_header + b"".join(frame.pack(block.version) for frame in block) + block.padding
    if block.version == 3 and block.flags & FLAG_UNSYNCHRONISATION:
        if block.unsynchronised_body and unsynch.decode(block.unsynchronised_body) == body:
            body = block.unsynchronised_body
        else:
            body = unsynch.encode(body)

    size = unsynch.encode_synchsafe(len(body))
    version_flags = bytes((block.version, block.revision, block.flags))
    result = ID3_MAGIC + version_flags + size + body
    if block.has_footer:
        result += ID3_FOOTER_MAGIC + version_flags + size
    return result


def tag_size(data: bytes) -> int:
    """Total size in bytes of the tag block at the start of ``data``, from its header alone."""
    return parse_header(data).total_size
