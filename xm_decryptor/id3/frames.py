import re
import struct
from dataclasses import dataclass
from typing import Optional

from xm_decryptor.const import (
    ENCODING_LATIN1,
    ENCODING_UTF16,
    ENCODING_UTF16BE,
    ENCODING_UTF8,
    ISO_639_2_CODES,
    LANGUAGE_FRAME_IDS,
)
from xm_decryptor.id3 import unsynch

FRAME_ID_PATTERN = re.compile(rb"^[A-Z0-9]{4}$")

# Format flags that make the stored payload differ from the frame content
_V3_OPAQUE_FLAGS = 0x00C0  # compression, encryption
_V4_OPAQUE_FLAGS = 0x000F  # compression, encryption, unsynchronisation, data length indicator

_CODECS = {
    ENCODING_LATIN1: "latin-1",
    ENCODING_UTF16: "utf-16",
    ENCODING_UTF16BE: "utf-16-be",
    ENCODING_UTF8: "utf-8",
}


def terminator_for(encoding: int) -> bytes:
    return b"\x00\x00" if encoding in (ENCODING_UTF16, ENCODING_UTF16BE) else b"\x00"


def decode_text(encoding: int, raw: bytes) -> str:
    """
    Decode an ID3v2 string, dropping trailing terminators.

    Raises:
        ValueError: On an unknown encoding byte.
        UnicodeDecodeError: If ``raw`` is not valid in the declared encoding.
    """
    codec = _CODECS.get(encoding)
    if codec is None:
        raise ValueError(f"Unknown text encoding {encoding}")
    text = raw.decode(codec)
    return text.rstrip("\x00")


def encode_text(encoding: int, text: str) -> bytes:
    codec = _CODECS.get(encoding)
    if codec is None:
        raise ValueError(f"Unknown text encoding {encoding}")
    if encoding == ENCODING_UTF16:
        return b"\xff\xfe" + text.encode("utf-16-le")
    return text.encode(codec)


def find_terminator(encoding: int, data: bytes, start: int = 0) -> int:
    """Return the offset of the first string terminator at or after ``start``, or -1."""
    terminator = terminator_for(encoding)
    if len(terminator) == 1:
        return data.find(terminator, start)
    # UTF-16 terminators are aligned to code units
    for pos in range(start, len(data) - 1, 2):
        if data[pos] == 0 and data[pos + 1] == 0:
            return pos
    return -1


@dataclass
class Frame:
    """
    A single ID3v2 frame kept as raw payload bytes.

    Attributes:
        frame_id (str): Four character frame identifier.
        flags (int): The 2-byte frame flags, preserved as read.
        data (bytes): Frame payload.
    """

    frame_id: str
    flags: int
    data: bytes

    def __repr__(self):
        return f"<{type(self).__name__} id={self.frame_id}, size={len(self.payload())}>"

    def payload(self) -> bytes:
        return self.data

    def pack(self, version: int) -> bytes:
        """
        Packs the frame header and payload.

        Args:
            version (int): ID3v2 major version, 4 stores the size as a synchsafe integer.

        Returns:
            bytes: Packed frame.
        """
        payload = self.payload()
        if version == 4:
            size = unsynch.encode_synchsafe(len(payload))
        else:
            size = struct.pack(">I", len(payload))
        return struct.pack(">4s4sH", self.frame_id.encode("ascii"), size, self.flags) + payload


@dataclass(repr=False)
class TextFrame(Frame):
    """Text information frame (``T***`` except ``TXXX``): encoding byte followed by the text."""

    @property
    def encoding(self) -> int:
        return self.data[0] if self.data else ENCODING_LATIN1

    @property
    def value(self) -> str:
        if not self.data:
            return ""
        return decode_text(self.encoding, self.data[1:])

    @classmethod
    def build(cls, frame_id: str, value: str, encoding: Optional[int] = None, flags: int = 0) -> "TextFrame":
        if encoding is None:
            try:
                value.encode("latin-1")
                encoding = ENCODING_LATIN1
            except UnicodeEncodeError:
                encoding = ENCODING_UTF16
        return cls(frame_id, flags, bytes([encoding]) + encode_text(encoding, value))


@dataclass(repr=False)
class LanguageFrame(Frame):
    """
    Frame with an encoding byte and a language code (``COMM``, ``USLT``, ``USER``).

    The language code is stored with the width it was read with: 3 bytes for
    standard tags, 2 bytes for the .xm variant. Description and text stay raw
    so that serialisation reproduces the original bytes.
    """

    encoding: int = ENCODING_LATIN1
    language: bytes = b"XXX"
    description_raw: bytes = b""
    text_raw: bytes = b""
    has_description: bool = True
    terminated: bool = True

    @classmethod
    def from_payload(cls, frame_id: str, flags: int, data: bytes, language_width: int) -> "LanguageFrame":
        encoding = data[0]
        language = data[1 : 1 + language_width]
        rest = data[1 + language_width :]

        if frame_id == "USER":
            return cls(frame_id, flags, b"", encoding, language, b"", rest, has_description=False)

        end = find_terminator(encoding, rest)
        if end == -1:
            return cls(frame_id, flags, b"", encoding, language, rest, b"", terminated=False)
        term_len = len(terminator_for(encoding))
        return cls(frame_id, flags, b"", encoding, language, rest[:end], rest[end + term_len :])

    @property
    def language_width(self) -> int:
        return len(self.language)

    @property
    def description(self) -> str:
        return decode_text(self.encoding, self.description_raw)

    @property
    def text(self) -> str:
        return decode_text(self.encoding, self.text_raw)

    @text.setter
    def text(self, value: str):
        self.text_raw = encode_text(self.encoding, value)

    def payload(self) -> bytes:
        parts = [bytes([self.encoding]), self.language]
        if self.has_description:
            parts.append(self.description_raw)
            if self.terminated:
                parts.append(terminator_for(self.encoding))
        parts.append(self.text_raw)
        return b"".join(parts)


def _is_letter(byte: int) -> bool:
    return 0x41 <= byte <= 0x5A or 0x61 <= byte <= 0x7A


def detect_language_width(data: bytes) -> Optional[int]:
    """
    Guess the language code width of a language frame payload.

    Returns 3 when an ISO 639-2 code (or three NULs) follows the encoding
    byte, 2 when two letters do that do not start such a code, None when the
    payload does not decide. A 2-byte code followed by a description that
    starts with a letter, like ``zhIntro``, is still read as ``zh``.
    """
    code = data[1:4]
    if code == b"\x00\x00\x00":
        return 3
    if len(code) >= 2 and _is_letter(code[0]) and _is_letter(code[1]):
        if len(code) == 3 and _is_iso_639_2(code):
            return 3
        return 2
    return None


def _is_iso_639_2(code: bytes) -> bool:
    # Mixed case never occurs in a real code
    if not (code.islower() or code.isupper()):
        return False
    return code.decode("ascii", "replace").lower() in ISO_639_2_CODES


def has_opaque_payload(version: int, flags: int) -> bool:
    mask = _V4_OPAQUE_FLAGS if version == 4 else _V3_OPAQUE_FLAGS
    return bool(flags & mask)


def make_frame(version: int, frame_id: str, flags: int, data: bytes, language_width: int) -> Frame:
    """Build the most specific frame type able to reproduce ``data`` exactly."""
    if has_opaque_payload(version, flags):
        return Frame(frame_id, flags, data)
    if frame_id in LANGUAGE_FRAME_IDS and len(data) >= 1 + language_width and data[0] in _CODECS:
        return LanguageFrame.from_payload(frame_id, flags, data, language_width)
    if frame_id.startswith("T") and frame_id != "TXXX":
        return TextFrame(frame_id, flags, data)
    return Frame(frame_id, flags, data)
