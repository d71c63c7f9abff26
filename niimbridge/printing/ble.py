"""Bluetooth LE link to NIIMBOT printers using bleak."""

import asyncio
import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from functools import reduce

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from niimbridge.printing.base import DeviceMetadata, EncodedImage, PrinterError

logger = logging.getLogger(__name__)

# Combined notify/write characteristic used by NIIMBOT printers
NIIMBOT_CHARACTERISTIC = "bef8d6c9-9c21-4c9e-b632-bd58c1009f9f"

SCAN_TIMEOUT = 10.0
RESPONSE_TIMEOUT = 10.0
STATUS_POLL_INTERVAL = 0.1

PACKET_HEAD = b"\x55\x55"
PACKET_TAIL = b"\xaa\xaa"
ERROR_RESPONSE = 0xDB

# Default print direction by model, as reported by the vendor apps
MODEL_DIRECTIONS = {
    "D11": "left",
    "D11_H": "left",
    "D101": "left",
    "D110": "left",
    "D110_M": "left",
    "B1": "top",
    "B18": "top",
    "B21": "top",
    "B21_PRO": "top",
    "B203": "top",
    "B3S": "top",
}


class RequestCode(IntEnum):
    """NIIMBOT request packet types."""

    START_PRINT = 0x01
    START_PAGE_PRINT = 0x03
    SET_DIMENSION = 0x13
    SET_QUANTITY = 0x15
    SET_LABEL_DENSITY = 0x21
    SET_LABEL_TYPE = 0x23
    PRINT_BITMAP_ROW = 0x85
    GET_PRINT_STATUS = 0xA3
    END_PAGE_PRINT = 0xE3
    END_PRINT = 0xF3


@dataclass(frozen=True)
class NiimbotPacket:
    """A framed NIIMBOT packet: 55 55 type len data checksum aa aa."""

    type: int
    data: bytes = b""

    @property
    def checksum(self) -> int:
        return reduce(lambda acc, b: acc ^ b, self.data, self.type ^ len(self.data))

    def to_bytes(self) -> bytes:
        return (
            PACKET_HEAD
            + bytes((self.type, len(self.data)))
            + self.data
            + bytes((self.checksum,))
            + PACKET_TAIL
        )

    @classmethod
    def from_bytes(cls, raw: bytes) -> "NiimbotPacket":
        """Parse one complete frame.

        Raises:
            PrinterError: If the frame is malformed.
        """
        if len(raw) < 7 or raw[:2] != PACKET_HEAD or raw[-2:] != PACKET_TAIL:
            raise PrinterError(f"Malformed packet: {raw.hex()}")
        length = raw[3]
        if len(raw) != length + 7:
            raise PrinterError(f"Packet length mismatch: {raw.hex()}")
        packet = cls(type=raw[2], data=bytes(raw[4 : 4 + length]))
        if packet.checksum != raw[4 + length]:
            raise PrinterError(f"Packet checksum mismatch: {raw.hex()}")
        return packet


def split_packets(buffer: bytearray) -> list[NiimbotPacket]:
    """Take all complete frames out of a receive buffer.

    Bytes before a frame header are discarded; an incomplete trailing frame
    stays in the buffer.

    Args:
        buffer: Receive buffer, modified in place.

    Returns:
        list[NiimbotPacket]: Parsed packets.
    """
    packets = []
    while True:
        start = buffer.find(PACKET_HEAD)
        if start < 0:
            # A trailing 0x55 may be half a header
            keep = 1 if buffer[-1:] == PACKET_HEAD[:1] else 0
            del buffer[: len(buffer) - keep]
            return packets
        del buffer[:start]
        if len(buffer) < 4:
            return packets
        frame_len = buffer[3] + 7
        if len(buffer) < frame_len:
            return packets
        frame = bytes(buffer[:frame_len])
        del buffer[:frame_len]
        try:
            packets.append(NiimbotPacket.from_bytes(frame))
        except PrinterError as e:
            logger.debug(f"Dropping frame: {e}")


def model_from_name(name: str) -> str:
    """Derive the model from an advertised name ("D110_M-H1234" -> "D110_M")."""
    return name.split("-", 1)[0].strip().upper()


class NiimbotBleLink:
    """Bluetooth LE link to a NIIMBOT printer."""

    def __init__(
        self,
        name: str,
        scan_timeout: float = SCAN_TIMEOUT,
        response_timeout: float = RESPONSE_TIMEOUT,
    ):
        """Initialize the link.

        Args:
            name: Advertised Bluetooth name of the printer.
            scan_timeout: Seconds to scan for the printer.
            response_timeout: Seconds to wait for each command response.
        """
        self.name = name
        self.scan_timeout = scan_timeout
        self.response_timeout = response_timeout
        self._client: BleakClient | None = None
        self._metadata: DeviceMetadata | None = None
        self._buffer = bytearray()
        self._responses: asyncio.Queue[NiimbotPacket] = asyncio.Queue()

    async def connect(self) -> None:
        """Scan for the printer by name and connect.

        Raises:
            PrinterError: If the printer is not found or refuses the connection.
        """
        logger.info(f"Scanning for {self.name}")
        try:
            device = await BleakScanner.find_device_by_name(self.name, timeout=self.scan_timeout)
            if device is None:
                raise PrinterError(f"Printer {self.name!r} not found")

            self._client = BleakClient(device)
            await self._client.connect()
            await self._client.start_notify(NIIMBOT_CHARACTERISTIC, self._on_notify)
        except BleakError as err:
            raise PrinterError(f"Could not connect to {self.name}: {err}") from err

        model = model_from_name(device.name or self.name)
        self._metadata = DeviceMetadata(
            model=model, print_direction=MODEL_DIRECTIONS.get(model, "top")
        )
        logger.info(f"Connected to {self.name} (model {model})")

    async def disconnect(self) -> None:
        """Disconnect from the printer. Does nothing when not connected."""
        client, self._client = self._client, None
        if client is not None and client.is_connected:
            await client.disconnect()
            logger.info(f"Disconnected from {self.name}")

    def get_metadata(self) -> DeviceMetadata | None:
        return self._metadata

    def _on_notify(self, _sender, data: bytearray) -> None:
        self._buffer.extend(data)
        for packet in split_packets(self._buffer):
            self._responses.put_nowait(packet)

    async def _send(self, packet: NiimbotPacket) -> None:
        if self._client is None:
            raise PrinterError("Not connected")
        try:
            await self._client.write_gatt_char(
                NIIMBOT_CHARACTERISTIC, packet.to_bytes(), response=False
            )
        except BleakError as err:
            raise PrinterError(f"Write failed: {err}") from err

    async def _transceive(
        self, code: RequestCode, data: bytes = b"\x01", offset: int = 1
    ) -> NiimbotPacket:
        """Send a request and wait for its response.

        Args:
            code: Request type.
            data: Request payload.
            offset: Response type minus request type.

        Returns:
            NiimbotPacket: The response.

        Raises:
            PrinterError: On timeout or an error response.
        """
        expected = (code + offset) & 0xFF
        await self._send(NiimbotPacket(code, data))

        while True:
            try:
                packet = await asyncio.wait_for(self._responses.get(), self.response_timeout)
            except TimeoutError as err:
                raise PrinterError(f"No response to {code.name}") from err

            if packet.type == expected:
                return packet
            if packet.type == ERROR_RESPONSE:
                raise PrinterError(f"Printer rejected {code.name}: {packet.data.hex()}")
            logger.debug(f"Ignoring packet 0x{packet.type:02x} while waiting for {code.name}")

    async def _expect_ok(self, code: RequestCode, data: bytes = b"\x01", offset: int = 1) -> None:
        response = await self._transceive(code, data, offset)
        if not response.data or not response.data[0]:
            raise PrinterError(f"Printer refused {code.name}")

    async def print_image(
        self,
        image: EncodedImage,
        density: int = 3,
        label_type: int = 1,
        quantity: int = 1,
    ) -> None:
        """Print an encoded image.

        Args:
            image: Encoded raster.
            density: Thermal density 1-5.
            label_type: Label type code.
            quantity: Number of labels.

        Raises:
            PrinterError: If any step of the print sequence fails.
        """
        await self._expect_ok(RequestCode.SET_LABEL_DENSITY, bytes((density,)), 16)
        await self._expect_ok(RequestCode.SET_LABEL_TYPE, bytes((label_type,)), 16)
        await self._expect_ok(RequestCode.START_PRINT)
        await self._expect_ok(RequestCode.START_PAGE_PRINT)
        await self._expect_ok(
            RequestCode.SET_DIMENSION, struct.pack(">HH", image.height, image.width)
        )
        await self._expect_ok(RequestCode.SET_QUANTITY, struct.pack(">H", quantity))

        for y, row in enumerate(image.rows):
            header = struct.pack(">H3BB", y, 0, 0, 0, 1)
            await self._send(NiimbotPacket(RequestCode.PRINT_BITMAP_ROW, header + row))

        while (await self._transceive(RequestCode.END_PAGE_PRINT)).data[:1] != b"\x01":
            await asyncio.sleep(STATUS_POLL_INTERVAL)

        while True:
            status = await self._transceive(RequestCode.GET_PRINT_STATUS, offset=16)
            if len(status.data) < 2:
                raise PrinterError(f"Short print status: {status.data.hex()}")
            (page,) = struct.unpack(">H", status.data[:2])
            if page >= quantity:
                break
            await asyncio.sleep(STATUS_POLL_INTERVAL)

        await self._expect_ok(RequestCode.END_PRINT)
        logger.info(f"Printed {quantity} label(s) on {self.name}")
