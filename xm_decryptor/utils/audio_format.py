import struct
from typing import Optional

from xm_decryptor.const import AUDIO_SNIFF_SIZE

# ftyp brands found in audio-only MP4 files
_MP4_AUDIO_BRANDS = {b"M4A ", b"M4B ", b"M4P ", b"mp42", b"mp41", b"isom", b"iso2", b"dash", b"3gp4", b"3gp5", b"3gp6"}


def is_mp4_header(data: bytes) -> bool:
    """Check if the data starts with an ftyp box."""
    if len(data) < 12:
        return False
    size, box_type = struct.unpack_from(">I4s", data, 0)
    if box_type != b"ftyp" or size < 12:
        return False
    return data[8:12] in _MP4_AUDIO_BRANDS


def _is_mpeg_sync(data: bytes) -> bool:
    return len(data) >= 2 and data[0] == 0xFF and data[1] & 0xE0 == 0xE0


def sniff_extension(data: bytes) -> Optional[str]:
    """
    Guess the file extension of an audio stream from its first bytes.

    Args:
        data (bytes): Start of the stream, only the first ``AUDIO_SNIFF_SIZE`` bytes are looked at.

    Returns:
        Optional[str]: Extension without the dot, or None if the format is not recognised.
    """
    head = bytes(data[:AUDIO_SNIFF_SIZE])
    if head.startswith(b"fLaC"):
        return "flac"
    if is_mp4_header(head):
        return "m4a"
    if head.startswith(b"RIFF") and head[8:12] == b"WAVE":
        return "wav"
    if head.startswith(b"OggS"):
        return "ogg"
    if head.startswith(b"ID3"):
        return "mp3"
    if _is_mpeg_sync(head):
        # Layer bits 00 mark an ADTS AAC stream
        return "aac" if head[1] & 0x06 == 0 else "mp3"
    return None
