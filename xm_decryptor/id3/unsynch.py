"""
ID3v2 unsynchronisation and synchsafe integers.

Unsynchronisation keeps tag data from containing false MPEG sync patterns:
a 0x00 byte is inserted after every 0xFF that is followed by 0x00 or by a
byte whose top three bits are set. Synchsafe integers store 28 bits in four
bytes with the high bit of each byte cleared.
"""

SYNCHSAFE_MAX = 0x0FFF_FFFF


def encode_synchsafe(n: int) -> bytes:
    """Encode ``n`` as a 4-byte synchsafe integer."""
    if not 0 <= n <= SYNCHSAFE_MAX:
        raise ValueError(f"Synchsafe integer out of range: {n}")
    return bytes(((n >> 21) & 0x7F, (n >> 14) & 0x7F, (n >> 7) & 0x7F, n & 0x7F))


def decode_synchsafe(data: bytes) -> int:
    """
    Decode a 4-byte synchsafe integer.

    Raises:
        ValueError: If ``data`` is not 4 bytes or has a high bit set.
    """
    if len(data) != 4:
        raise ValueError(f"Synchsafe integer needs 4 bytes, got {len(data)}")
    value = 0
    for byte in data:
        if byte & 0x80:
            raise ValueError(f"Invalid synchsafe byte 0x{byte:02X}")
        value = (value << 7) | byte
    return value


def is_synchsafe(data: bytes) -> bool:
    return all(not byte & 0x80 for byte in data)


def decode(data: bytes) -> bytes:
    """Reverse unsynchronisation by dropping the 0x00 that follows each 0xFF."""
    if b"\xff" not in data:
        return bytes(data)

    result = bytearray()
    previous_ff = False
    for byte in data:
        if previous_ff and byte == 0x00:
            previous_ff = False
            continue
        result.append(byte)
        previous_ff = byte == 0xFF
    return bytes(result)


def encode(data: bytes) -> bytes:
    """Apply unsynchronisation."""
    if b"\xff" not in data:
        return bytes(data)

    result = bytearray()
    length = len(data)
    for i, byte in enumerate(data):
        result.append(byte)
        if byte == 0xFF:
            next_byte = data[i + 1] if i + 1 < length else None
            # A trailing 0xFF would sync with the audio that follows the tag.
            if next_byte is None or next_byte == 0x00 or next_byte & 0xE0 == 0xE0:
                result.append(0x00)
    return bytes(result)
