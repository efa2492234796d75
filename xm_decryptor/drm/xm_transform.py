"""
Transform engine for Ximalaya .xm containers.

An .xm file is an ID3v2 tag block followed by the audio stream, of which a
leading span has been replaced by AES-256-CBC ciphertext:

    [ID3 header][tag frames][encrypted span (TSIZ bytes)][plain tail]

The tag frames carry the parameters: ``TSIZ`` holds the span length,
``TSRC`` (or ``TENC`` when ``TSRC`` is empty) the hex IV, and ``TSSE`` the
first base64 characters of the audio stream, kept out of the ciphertext.
Decrypting the span yields the remaining base64 text of the leading audio
chunk.
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Optional

from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad

from xm_decryptor.configs import settings
from xm_decryptor.const import (
    FRAME_CLEAR_PREFIX,
    FRAME_ENCRYPTED_SIZE,
    FRAME_IV,
    FRAME_IV_FALLBACK,
    ID3_HEADER_SIZE,
    ID3_MAGIC,
)
from xm_decryptor.id3 import codec
from xm_decryptor.id3.codec import BadMagic, TagBlock

logger = logging.getLogger(__name__)

HEADER_SIZE = ID3_HEADER_SIZE


class DecryptionError(Exception):
    """Base exception for the transform engine."""

    pass


class HeaderTooShort(DecryptionError):
    pass


class UnsupportedVariant(DecryptionError):
    pass


class PayloadEmpty(DecryptionError):
    pass


@dataclass(frozen=True)
class TransformState:
    """
    Key material and span layout derived from one container.

    Attributes:
        key (bytes): AES key.
        iv (bytes): 16-byte CBC initialisation vector.
        tag_size (int): Size of the whole tag block, header included.
        encrypted_size (int): Length of the encrypted span.
        clear_prefix (str): Base64 characters stored in the clear ahead of the span.
        version (int): ID3v2 major version of the tag block.
    """

    key: bytes
    iv: bytes
    tag_size: int
    encrypted_size: int
    clear_prefix: str
    version: int

    def __repr__(self):
        return f"<TransformState span={self.span_start}+{self.encrypted_size}, v2.{self.version}>"

    @property
    def span_start(self) -> int:
        """Offset of the encrypted span within the payload region."""
        return self.tag_size - HEADER_SIZE

    @property
    def span_end(self) -> int:
        return self.span_start + self.encrypted_size


def _check_regions(header_bytes: bytes, payload_bytes: bytes):
    if len(header_bytes) < HEADER_SIZE:
        raise HeaderTooShort(f"Container header needs {HEADER_SIZE} bytes, got {len(header_bytes)}")
    if len(header_bytes) > HEADER_SIZE:
        raise ValueError(f"Container header is exactly {HEADER_SIZE} bytes, got {len(header_bytes)}")
    if not payload_bytes:
        raise PayloadEmpty("Container has no payload after the header")


def _frame_text(block: TagBlock, frame_id: str) -> str:
    try:
        return block.text(frame_id, "") or ""
    except (TypeError, ValueError) as e:
        # UnicodeDecodeError is a ValueError
        raise UnsupportedVariant(f"Frame {frame_id} is not readable text: {e}") from e


def _read_iv(block: TagBlock) -> bytes:
    iv_text = _frame_text(block, FRAME_IV).strip() or _frame_text(block, FRAME_IV_FALLBACK).strip()
    if not iv_text:
        raise UnsupportedVariant(f"Neither {FRAME_IV} nor {FRAME_IV_FALLBACK} carries an IV")
    try:
        iv = bytes.fromhex(iv_text)
    except ValueError as e:
        raise UnsupportedVariant(f"IV {iv_text!r} is not hexadecimal") from e
    if len(iv) != AES.block_size:
        raise UnsupportedVariant(f"IV must be {AES.block_size} bytes, got {len(iv)}")
    return iv


def _read_encrypted_size(block: TagBlock) -> int:
    size_text = _frame_text(block, FRAME_ENCRYPTED_SIZE).strip()
    if not size_text:
        raise UnsupportedVariant(f"Missing {FRAME_ENCRYPTED_SIZE} frame with the encrypted size")
    try:
        encrypted_size = int(size_text)
    except ValueError as e:
        raise UnsupportedVariant(f"{FRAME_ENCRYPTED_SIZE} value {size_text!r} is not a number") from e
    if encrypted_size <= 0 or encrypted_size % AES.block_size:
        raise UnsupportedVariant(
            f"Encrypted size {encrypted_size} is not a positive multiple of {AES.block_size}"
        )
    return encrypted_size


def derive_state(header_bytes: bytes, payload_bytes: bytes, key: Optional[bytes] = None) -> TransformState:
    """
    Derive the transform state of a container.

    Args:
        header_bytes (bytes): The fixed-size header region.
        payload_bytes (bytes): Everything after the header.
        key (Optional[bytes]): AES key, defaults to the configured ``xm_key``.

    Returns:
        TransformState: Immutable state for this container only.

    Raises:
        DecryptionError: ``HeaderTooShort``, ``PayloadEmpty`` or ``UnsupportedVariant``.
        TagError: If the tag block carrying the parameters cannot be parsed.
    """
    _check_regions(header_bytes, payload_bytes)

    if header_bytes[:3] != ID3_MAGIC:
        raise UnsupportedVariant(f"Container does not start with an ID3v2 tag block: {bytes(header_bytes[:3])!r}")
    try:
        header = codec.parse_header(header_bytes)
    except BadMagic as e:
        raise UnsupportedVariant(str(e)) from e

    block = codec.parse(bytes(header_bytes) + bytes(payload_bytes[: header.total_size - HEADER_SIZE]))
    encrypted_size = _read_encrypted_size(block)
    iv = _read_iv(block)
    clear_prefix = _frame_text(block, FRAME_CLEAR_PREFIX).strip()

    state = TransformState(
        key=key if key is not None else settings.xm_key.encode("utf-8"),
        iv=iv,
        tag_size=header.total_size,
        encrypted_size=encrypted_size,
        clear_prefix=clear_prefix,
        version=header.version,
    )
    if state.span_end > len(payload_bytes):
        raise UnsupportedVariant(
            f"Encrypted span ends at payload offset {state.span_end}, past the {len(payload_bytes)} byte payload"
        )

    logger.debug("Derived %r", state)
    return state


def _cipher(state: TransformState):
    try:
        return AES.new(state.key, AES.MODE_CBC, iv=state.iv)
    except ValueError as e:
        raise UnsupportedVariant(f"Invalid key material: {e}") from e


def decrypt_payload(state: TransformState, payload_bytes: bytes) -> bytes:
    """
    Decrypt the encrypted span of a payload in place.

    The result has the same length as ``payload_bytes``: bytes before and after
    the span are returned unchanged.
    """
    if not payload_bytes:
        raise PayloadEmpty("Container has no payload after the header")
    span = memoryview(payload_bytes)[state.span_start : state.span_end]
    plain = _cipher(state).decrypt(span)
    return bytes(payload_bytes[: state.span_start]) + plain + bytes(payload_bytes[state.span_end :])


def encrypt(state: TransformState, payload_bytes: bytes) -> bytes:
    """Inverse of ``decrypt_payload`` for the same state."""
    if not payload_bytes:
        raise PayloadEmpty("Container has no payload after the header")
    span = memoryview(payload_bytes)[state.span_start : state.span_end]
    sealed = _cipher(state).encrypt(span)
    return bytes(payload_bytes[: state.span_start]) + sealed + bytes(payload_bytes[state.span_end :])


def decrypt(header_bytes: bytes, payload_bytes: bytes, key: Optional[bytes] = None) -> bytes:
    """
    Decrypt the payload region of a container.

    Args:
        header_bytes (bytes): The fixed-size header region.
        payload_bytes (bytes): Everything after the header.
        key (Optional[bytes]): AES key, defaults to the configured ``xm_key``.

    Returns:
        bytes: The payload with its encrypted span decrypted, same length as ``payload_bytes``.
    """
    state = derive_state(header_bytes, payload_bytes, key=key)
    return decrypt_payload(state, payload_bytes)


def decode_audio(state: TransformState, decrypted_payload: bytes) -> bytes:
    """
    Rebuild the audio stream from a decrypted payload.

    The decrypted span is PKCS#7 padded base64 text; the clear prefix goes in
    front of it before decoding, and the plain tail is appended as is.

    Raises:
        UnsupportedVariant: If the span does not decode, which points to a wrong key
            or a container variant using a different scheme.
    """
    text = decrypted_payload[state.span_start : state.span_end]
    try:
        text = unpad(text, AES.block_size)
    except ValueError as e:
        raise UnsupportedVariant(f"Decrypted span has invalid padding: {e}") from e

    try:
        encoded = state.clear_prefix.encode("ascii") + text
        head = base64.b64decode(encoded, validate=True)
    except (UnicodeEncodeError, binascii.Error) as e:
        raise UnsupportedVariant(f"Decrypted span is not base64 text: {e}") from e

    logger.debug("Decoded %d audio bytes from the encrypted span", len(head))
    return head + bytes(decrypted_payload[state.span_end :])
