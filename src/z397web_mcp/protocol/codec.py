"""Packet envelope, escape packing and checksum for the Z397 wire format.

Packet layout before packing::

    +----------+--------+---------+----+-----+-----------------+---------+
    | Checksum | Length | License | ID | Cmd | Addr / fields   | Padding |
    | 1 byte   | 1 byte | 0x08    | 1  | 1   | variable        | to 4n   |
    +----------+--------+---------+----+-----+-----------------+---------+

- Length: 2 + number of data bytes (checksum and length included, padding not)
- Checksum: 0xFF - (sum of the unpadded packet with checksum slot = 0)
- Padding: zero bytes up to a multiple of 4

The padded packet is escape packed, four raw bytes to five wire bytes, and
framed as ``[type] + packed + [0x0D]``. Packing moves bit 7 of each byte into
a sign byte and XORs every output byte below 0x30 with 0xCA, so no packed byte
can be mistaken for a start byte or the terminator.
"""

from __future__ import annotations

from dataclasses import dataclass

from .framing import END_BYTE, RawFrame

ESCAPE_MASK = 0xCA
ESCAPE_THRESHOLD = 0x30  # bytes below this are escaped
GROUP_SIZE = 4
PACKED_GROUP_SIZE = 5
ID_OFFSET = 3


@dataclass
class DecodedPacket:
    """An unpacked frame: type byte, embedded request id and packet bytes."""

    type: int
    id: int | None
    payload: bytes

    def __repr__(self) -> str:
        return (
            f"DecodedPacket(type=0x{self.type:02X}, id={self.id}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )


def escape_pack(data: bytes) -> bytes:
    """Pack groups of four bytes into five 7-bit-safe wire bytes.

    Each group ``[a, b, c, d]`` becomes ``[s, a', b', c', d']`` where ``s``
    collects the high bits (``a`` in bit 3 down to ``d`` in bit 0) and the
    other bytes have bit 7 cleared. Any output byte below 0x30 is XORed
    with 0xCA.

    Raises:
        ValueError: If ``len(data)`` is not a multiple of 4.
    """
    if len(data) % GROUP_SIZE:
        raise ValueError(
            f"Packed data must be a multiple of {GROUP_SIZE} bytes, "
            f"got {len(data)}"
        )
    out = bytearray()
    for i in range(0, len(data), GROUP_SIZE):
        group = data[i : i + GROUP_SIZE]
        sign = 0
        for k, b in enumerate(group):
            sign |= (b >> 7) << (GROUP_SIZE - 1 - k)
        for b in (sign, *(b & 0x7F for b in group)):
            out.append(b ^ ESCAPE_MASK if b < ESCAPE_THRESHOLD else b)
    return bytes(out)


def escape_unpack(data: bytes) -> bytes:
    """Reverse the escape packing, five wire bytes to four raw bytes.

    Bytes with bit 7 set are XORed with 0xCA, then output byte ``k`` takes
    its high bit from bit ``k`` of the group's last byte. The converter
    places the high-bit carrier at the end of the group, unlike
    :func:`escape_pack`, so the two are not inverses of each other.

    A trailing incomplete group is ignored.
    """
    out = bytearray()
    usable = len(data) - len(data) % PACKED_GROUP_SIZE
    for i in range(0, usable, PACKED_GROUP_SIZE):
        group = [
            b ^ ESCAPE_MASK if b & 0x80 else b
            for b in data[i : i + PACKED_GROUP_SIZE]
        ]
        carrier = group[GROUP_SIZE]
        for k in range(GROUP_SIZE):
            out.append((group[k] | (((carrier >> k) & 1) << 7)) & 0xFF)
    return bytes(out)


def build_packet(data_payload: bytes) -> bytes:
    """Build the unpacked, zero padded ``[checksum, length, data...]`` packet."""
    packet = bytearray([0x00, 0x00]) + bytes(data_payload)
    if len(packet) > 0xFF:
        raise ValueError(f"Packet too long: {len(packet)} bytes")
    packet[1] = len(packet)
    packet[0] = 0xFF - (sum(packet) & 0xFF)
    while len(packet) % GROUP_SIZE:
        packet.append(0x00)
    return bytes(packet)


def assemble(frame_type: int, data_payload: bytes) -> bytes:
    """Build a complete wire frame for ``data_payload``.

    Args:
        frame_type: Start byte of the frame (e.g. 0x20 or 0x1F).
        data_payload: Packet bytes starting with the license byte.

    Returns:
        ``[frame_type] + escape_pack(packet) + [0x0D]``.
    """
    packed = escape_pack(build_packet(data_payload))
    return bytes([frame_type]) + packed + bytes([END_BYTE])


def unpack_frame(frame: RawFrame) -> DecodedPacket:
    """Unpack a delimited frame and pull out the embedded request id."""
    decoded = escape_unpack(frame.payload)
    request_id = decoded[ID_OFFSET] if len(decoded) > ID_OFFSET else None
    return DecodedPacket(type=frame.type, id=request_id, payload=decoded)


def checksum_ok(decoded: bytes) -> bool:
    """Validate an unpacked packet.

    The packet passes when the declared checksum matches, or when the byte
    at offset 2 equals the declared packet length. Either condition is
    enough, so a packet with a correct length byte passes even with a
    corrupted checksum. Some controller firmware depends on this.
    """
    if len(decoded) < 2:
        return False
    packet = list(decoded[: decoded[1]])
    if len(packet) < 3:
        return False
    length = len(packet)
    declared_sum = packet.pop(0)
    declared_length = packet[1]
    computed = (sum(packet) & 0xFF) ^ 0xFF
    return declared_sum == computed or declared_length == length
