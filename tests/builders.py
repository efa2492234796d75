"""
Builders for synthetic .xm containers and ID3v2 tag blocks.

Containers are built the way the app writes them: the leading chunk of the
audio is base64 encoded, its first characters go to the TSSE frame and the
rest is AES-256-CBC encrypted into the span that follows the tag block.
"""

import base64
import random
import struct

from Crypto.Cipher import AES
from Crypto.Util.Padding import pad

from xm_decryptor.id3 import unsynch

XM_KEY = b"ximalaya" * 4
XM_IV = bytes.fromhex("00112233445566778899aabbccddeeff")


def text_payload(value: str, encoding: int = 0) -> bytes:
    if encoding == 1:
        return b"\x01\xff\xfe" + value.encode("utf-16-le")
    return bytes([encoding]) + value.encode("utf-8" if encoding == 3 else "latin-1")


def comm_payload(language: bytes = b"zh", description: bytes = b"", text: bytes = b"from the app") -> bytes:
    return b"\x00" + language + description + b"\x00" + text


def escape_zero_only(data: bytes) -> bytes:
    """Unsynchronisation as some writers apply it: only 0xFF 0x00 gets escaped."""
    return data.replace(b"\xff\x00", b"\xff\x00\x00")


def build_tag(
    frames: list[tuple[str, bytes]],
    version: int = 3,
    flags: int = 0,
    padding: int = 0,
    extended_header: bytes = b"",
    unsynchronise=unsynch.encode,
) -> bytes:
    """Assemble an ID3v2 tag block from (frame id, payload) pairs."""
    body = bytearray(extended_header)
    for frame_id, payload in frames:
        if version == 4:
            size = unsynch.encode_synchsafe(len(payload))
        else:
            size = struct.pack(">I", len(payload))
        body += frame_id.encode("ascii") + size + b"\x00\x00" + payload
    body += b"\x00" * padding
    if version == 3 and flags & 0x80:
        body = unsynchronise(bytes(body))

    size = unsynch.encode_synchsafe(len(body))
    tag = b"ID3" + bytes((version, 0, flags)) + size + bytes(body)
    if version == 4 and flags & 0x10:
        tag += b"3DI" + bytes((version, 0, flags)) + size
    return tag


def make_m4a(size: int = 4096, seed: int = 7) -> bytes:
    ftyp = struct.pack(">I4s4sI8s", 24, b"ftyp", b"M4A ", 0, b"M4A mp42")
    mdat_header = struct.pack(">I4s", size - len(ftyp), b"mdat")
    body = random.Random(seed).randbytes(size - len(ftyp) - len(mdat_header))
    return ftyp + mdat_header + body


def build_xm(
    audio: bytes,
    head_size: int = 1000,
    clear_chars: int = 12,
    language: bytes = b"zh",
    version: int = 3,
    iv_frame: str = "TSRC",
    extra_frames: tuple = (),
    padding: int = 64,
    key: bytes = XM_KEY,
    flags: int = 0,
    unsynchronise=unsynch.encode,
) -> tuple[bytes, bytes]:
    """
    Build an .xm container around ``audio``.

    Returns:
        (container, tag) tuple, ``tag`` being the exact tag block bytes.
    """
    encoded = base64.b64encode(audio[:head_size])
    prefix, rest = encoded[:clear_chars], encoded[clear_chars:]
    span = AES.new(key, AES.MODE_CBC, iv=XM_IV).encrypt(pad(rest, AES.block_size))

    frames = [
        ("TIT2", text_payload("Episode 1")),
        ("TPE1", text_payload("Narrator")),
        ("TSIZ", text_payload(str(len(span)))),
    ]
    if iv_frame == "TSRC":
        frames.append(("TSRC", text_payload(XM_IV.hex())))
    else:
        frames.append(("TSRC", text_payload("")))
        frames.append(("TENC", text_payload(XM_IV.hex())))
    frames.append(("TSSE", text_payload(prefix.decode("ascii"))))
    frames.append(("COMM", comm_payload(language=language)))
    frames.extend(extra_frames)

    tag = build_tag(frames, version=version, flags=flags, padding=padding, unsynchronise=unsynchronise)
    return tag + span + audio[head_size:], tag

