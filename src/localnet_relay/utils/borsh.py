"""
Borsh reader and writer for Anchor instruction data.
"""

import hashlib
import struct


def anchor_discriminator(name: str, namespace: str = "global") -> bytes:
    """First 8 bytes of ``sha256("<namespace>:<name>")``."""
    return hashlib.sha256(f"{namespace}:{name}".encode()).digest()[:8]


class BorshReader:
    """Sequential decoder over a byte buffer."""

    def __init__(self, data: bytes):
        self.data = bytes(data)
        self.offset = 0

    def _take(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise ValueError(f"Buffer underrun reading {size} bytes at offset {self.offset}")
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def u8(self) -> int:
        return self._take(1)[0]

    def bool(self) -> bool:
        value = self.u8()
        if value > 1:
            raise ValueError(f"Invalid bool byte {value}")
        return value == 1

    def u32(self) -> int:
        return struct.unpack("<I", self._take(4))[0]

    def u64(self) -> int:
        return struct.unpack("<Q", self._take(8))[0]

    def fixed(self, size: int) -> bytes:
        return self._take(size)

    def bytes(self) -> bytes:
        return self._take(self.u32())

    def string(self) -> str:
        return self.bytes().decode("utf-8")

    def option(self) -> bool:
        """Read an Option tag; True when a value follows."""
        return self.bool()

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset


class BorshWriter:
    """Sequential encoder."""

    def __init__(self) -> None:
        self._parts: list[bytes] = []

    def u8(self, value: int) -> "BorshWriter":
        self._parts.append(struct.pack("<B", value))
        return self

    def bool(self, value: bool) -> "BorshWriter":
        return self.u8(1 if value else 0)

    def u64(self, value: int) -> "BorshWriter":
        self._parts.append(struct.pack("<Q", value))
        return self

    def fixed(self, value: bytes) -> "BorshWriter":
        self._parts.append(bytes(value))
        return self

    def bytes(self, value: bytes) -> "BorshWriter":
        self._parts.append(struct.pack("<I", len(value)))
        self._parts.append(bytes(value))
        return self

    def build(self) -> bytes:
        return b"".join(self._parts)
