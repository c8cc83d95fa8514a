# Byte transports for the steering link.
#
# A transport owns the device/socket handle and exposes three coroutines
# (connect, disconnect, write). They always run on the ConnectionLifecycle
# event loop. When the peer drops on its own, the transport reports it via
# the disconnect handler installed by the lifecycle.
#
# BleUartTransport talks to a Nordic-UART compatible BLE device (BBC micro:bit
# firmware exposes the same layout). WebSocketTransport sends the same text
# payloads to a bridge or a simulator.

import asyncio
import logging

import websockets
from bleak import BleakClient, BleakScanner

from linetracer.link.errors import DeviceNotFoundError, LinkUnavailableError

UART_SERVICE_UUID = "6e400001-b5a3-f393-e0a9-e50e24dcca9e"
# micro:bit naming: 0002 notifies towards the host, 0003 is written by the host
UART_NOTIFY_CHAR_UUID = "6e400002-b5a3-f393-e0a9-e50e24dcca9e"
UART_WRITE_CHAR_UUID = "6e400003-b5a3-f393-e0a9-e50e24dcca9e"

DEFAULT_NAME_PREFIX = "BBC micro:bit"


class Transport:
    """Base class for link transports."""

    def __init__(self, logger=None):
        self.logger = logger or logging.getLogger(__name__)
        self._disconnect_handler = None

    def set_disconnect_handler(self, handler):
        """handler(reason: str) is called when the peer drops unexpectedly."""
        self._disconnect_handler = handler

    def _report_lost(self, reason):
        if self._disconnect_handler is not None:
            self._disconnect_handler(reason)

    def describe(self):
        return type(self).__name__

    async def connect(self):
        raise NotImplementedError

    async def disconnect(self):
        raise NotImplementedError

    async def write(self, payload):
        raise NotImplementedError


class BleUartTransport(Transport):
    """Nordic UART over BLE (bleak).

    Args:
        name_prefix: Accept devices whose advertised name starts with this.
        address: Connect to this address directly instead of filtering by name/service.
        scan_timeout: Seconds to scan before giving up.
        write_with_response: Use acknowledged GATT writes, so write() resolves
                             only once the device accepted the payload.
    """

    def __init__(self, name_prefix=DEFAULT_NAME_PREFIX, address=None, scan_timeout=10.0,
                 write_with_response=True, logger=None):
        super().__init__(logger)
        self.name_prefix = name_prefix
        self.address = address
        self.scan_timeout = scan_timeout
        self.write_with_response = write_with_response
        self.device_name = None
        self._client = None

    def describe(self):
        return f"BLE {self.device_name or self.address or self.name_prefix}"

    def matches(self, device, advertisement):
        """Discovery filter: UART service advertised, or the expected name prefix."""
        service_uuids = [uuid.lower() for uuid in (advertisement.service_uuids or [])]
        if UART_SERVICE_UUID in service_uuids:
            return True
        name = device.name or advertisement.local_name or ""
        return bool(self.name_prefix) and name.startswith(self.name_prefix)

    async def _discover(self):
        if self.address:
            return await BleakScanner.find_device_by_address(self.address, timeout=self.scan_timeout)
        return await BleakScanner.find_device_by_filter(self.matches, timeout=self.scan_timeout)

    async def connect(self):
        device = await self._discover()
        if device is None:
            raise DeviceNotFoundError(
                f"No device advertising the UART service (prefix {self.name_prefix!r}) "
                f"found within {self.scan_timeout:.0f}s"
            )
        client = BleakClient(device, disconnected_callback=self._on_disconnected)
        await client.connect()
        self._client = client
        self.device_name = device.name or device.address
        self.logger.info("Connected to %s", self.device_name, extra={"component": "BLE"})

    async def disconnect(self):
        client, self._client = self._client, None
        if client is not None and client.is_connected:
            await client.disconnect()

    async def write(self, payload):
        client = self._client
        if client is None:
            raise LinkUnavailableError("BLE client not connected")
        await client.write_gatt_char(UART_WRITE_CHAR_UUID, payload, response=self.write_with_response)

    def _on_disconnected(self, client):
        # Also fired after our own disconnect(), which clears _client first
        if self._client is client:
            self._client = None
            self._report_lost(f"BLE device {self.device_name} disconnected")


class WebSocketTransport(Transport):
    """Sends each payload as one text message to a WebSocket bridge.

    Args:
        url: Bridge URL, e.g. ws://192.168.1.50:8765/uart
        open_timeout: Seconds allowed for the opening handshake.
    """

    def __init__(self, url, open_timeout=5.0, logger=None):
        super().__init__(logger)
        self.url = url
        self.open_timeout = open_timeout
        self._ws = None
        self._watcher = None

    def describe(self):
        return f"WebSocket {self.url}"

    async def connect(self):
        ws = await websockets.connect(
            self.url,
            open_timeout=self.open_timeout,
            ping_interval=30,
            ping_timeout=20,
            close_timeout=5,
        )
        self._ws = ws
        self._watcher = asyncio.ensure_future(self._watch_closed(ws))
        self.logger.info("Connected to %s", self.url, extra={"component": "WebSocket"})

    async def _watch_closed(self, ws):
        await ws.wait_closed()
        if self._ws is ws:
            self._ws = None
            self._report_lost(f"Bridge closed the connection (code {ws.close_code})")

    async def disconnect(self):
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        if self._watcher is not None:
            self._watcher.cancel()
            self._watcher = None

    async def write(self, payload):
        ws = self._ws
        if ws is None:
            raise LinkUnavailableError("WebSocket bridge not connected")
        await ws.send(payload.decode("utf-8"))


def make_transport(link_type, name_prefix=DEFAULT_NAME_PREFIX, address=None, scan_timeout=10.0,
                   bridge_url=None, logger=None):
    """Build the transport selected in config (LINK_TYPE)."""
    if link_type == "ble":
        return BleUartTransport(name_prefix=name_prefix, address=address,
                                scan_timeout=scan_timeout, logger=logger)
    if link_type == "websocket":
        if not bridge_url:
            raise ValueError("LINK_TYPE 'websocket' needs BRIDGE_URL")
        return WebSocketTransport(bridge_url, logger=logger)
    raise ValueError(f"Unknown link type: {link_type!r}")
