"""
Wire codec for file payloads.

File bytes travel inside JSON frames as lowercase hexadecimal text, the
format both backends use for ``file_content`` / ``fileContent``.
"""

import binascii

from ..errors import CodecError


def encode(data: bytes) -> str:
    """Encode raw bytes as lowercase hex text."""
    return bytes(data).hex()


def decode(text: str) -> bytes:
    """
    Decode hex text back into bytes.

    Raises:
        CodecError: If ``text`` is not a string, has odd length, or contains
            a non-hex character.
    """
    if not isinstance(text, str):
        raise CodecError(f"expected hex text, got {type(text).__name__}")
    if len(text) % 2:
        raise CodecError(f"odd-length hex payload ({len(text)} chars)")
    try:
        return binascii.unhexlify(text)
    except (binascii.Error, ValueError) as e:
        raise CodecError(f"invalid hex payload: {e}") from e


__all__ = ["encode", "decode"]
