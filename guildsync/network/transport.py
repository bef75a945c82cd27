"""Reliable (TCP) + unreliable (UDP) channels to one server, both non-blocking.

Usage:
    transport = TransportPair()
    transport.connect_unreliable(('203.0.113.5', 8081))
    transport.connect_reliable(('203.0.113.5', 8080))

    # Each frame:
    if transport.is_write_ready():
        ...
    chunks = transport.poll_reliable()
    datagrams = transport.poll_unreliable()
    transport.flush()
"""

import errno
import ipaddress
import logging
import select
import socket
import threading
from queue import Queue, Empty
from typing import List, Optional, Tuple

from ..constants import MAX_DATAGRAM_SIZE, RECV_BUFFER_SIZE

logger = logging.getLogger(__name__)

Address = Tuple[str, int]

# errno values meaning "connect started, result comes later"
_CONNECT_IN_PROGRESS = {errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EALREADY, errno.EAGAIN}
if hasattr(errno, 'WSAEWOULDBLOCK'):
    _CONNECT_IN_PROGRESS.add(errno.WSAEWOULDBLOCK)


class TransportError(ConnectionError):
    """A channel could not be created, connected or used."""


class TransportPair:
    """One reliable and one unreliable channel to the same server endpoint.

    Nothing here blocks: polls return whatever the kernel already has.
    """

    def __init__(self):
        self._tcp: Optional[socket.socket] = None
        self._udp: Optional[socket.socket] = None
        self.reliable_address: Optional[Address] = None
        self.unreliable_address: Optional[Address] = None
        self.reliable_connected = False
        self.peer_closed = False
        self._send_buffer = bytearray()

    # =========================================================================
    # CONNECTING
    # =========================================================================

    def connect_reliable(self, address: Address):
        """Begin a non-blocking TCP connect. Raises TransportError."""
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as e:
            raise TransportError(f"Failed to create TCP socket: {e}") from e
        try:
            sock.setblocking(False)
        except OSError as e:
            sock.close()
            raise TransportError(f"Failed to set TCP socket to non-blocking mode: {e}") from e

        result = sock.connect_ex(address)
        if result not in (0, *_CONNECT_IN_PROGRESS):
            sock.close()
            raise TransportError(f"Failed to connect to server: {errno.errorcode.get(result, result)}")

        self._tcp = sock
        self.reliable_address = address
        self.reliable_connected = False
        self.peer_closed = False
        self._send_buffer.clear()
        logger.debug(f"TCP connect to {address[0]}:{address[1]} started")

    def connect_unreliable(self, address: Address):
        """Open the UDP socket aimed at address. Raises TransportError."""
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        except OSError as e:
            raise TransportError(f"Failed to create UDP socket: {e}") from e
        try:
            sock.setblocking(False)
        except OSError as e:
            sock.close()
            raise TransportError(f"Failed to set UDP socket to non-blocking mode: {e}") from e

        self._udp = sock
        self.unreliable_address = address

    def is_write_ready(self) -> bool:
        """Check, without waiting, whether the pending TCP connect completed.

        Raises TransportError if the connect failed.
        """
        if self._tcp is None:
            return False
        if self.reliable_connected:
            return True

        try:
            _, writable, failed = select.select([], [self._tcp], [self._tcp], 0)
        except (OSError, ValueError) as e:
            raise TransportError(f"Connection to server failed: {e}") from e

        if failed or writable:
            err = self._tcp.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
            if err or failed:
                reason = errno.errorcode.get(err, err) if err else "socket error"
                raise TransportError(f"Connection to server failed: {reason}")
            self.reliable_connected = True
            return True
        return False

    # =========================================================================
    # RECEIVING
    # =========================================================================

    def poll_reliable(self) -> List[bytes]:
        """Read every chunk currently available on the TCP stream.

        A zero-length read sets ``peer_closed``. Other errors raise TransportError.
        """
        chunks: List[bytes] = []
        if self._tcp is None or not self.reliable_connected or self.peer_closed:
            return chunks
        while True:
            try:
                data = self._tcp.recv(RECV_BUFFER_SIZE)
            except (BlockingIOError, InterruptedError):
                break
            except OSError as e:
                raise TransportError(f"TCP receive error: {e}") from e
            if not data:
                self.peer_closed = True
                break
            chunks.append(data)
        return chunks

    def poll_unreliable(self) -> List[Tuple[Address, bytes]]:
        """Read every datagram available, keeping only those from the server."""
        datagrams: List[Tuple[Address, bytes]] = []
        if self._udp is None:
            return datagrams
        while True:
            try:
                data, sender = self._udp.recvfrom(MAX_DATAGRAM_SIZE)
            except (BlockingIOError, InterruptedError):
                break
            except OSError as e:
                # ICMP port-unreachable surfaces here on some platforms
                logger.debug(f"UDP receive error ignored: {e}")
                break
            if sender[:2] != self.unreliable_address:
                logger.debug(f"Dropped datagram from unexpected sender {sender[0]}:{sender[1]}")
                continue
            datagrams.append((sender[:2], data))
        return datagrams

    # =========================================================================
    # SENDING
    # =========================================================================

    def send_reliable(self, data: bytes) -> bool:
        """Queue data on the TCP stream and push as much as the kernel takes."""
        if self._tcp is None or not self.reliable_connected or self.peer_closed:
            return False
        self._send_buffer.extend(data)
        return self.flush()

    def flush(self) -> bool:
        """Write buffered TCP data without blocking. False on socket error."""
        if self._tcp is None or not self._send_buffer:
            return self._tcp is not None
        try:
            sent = self._tcp.send(self._send_buffer)
        except (BlockingIOError, InterruptedError):
            return True
        except OSError as e:
            logger.debug(f"TCP send failed: {e}")
            return False
        del self._send_buffer[:sent]
        return True

    def send_unreliable(self, data: bytes) -> bool:
        if self._udp is None or self.unreliable_address is None:
            return False
        try:
            self._udp.sendto(data, self.unreliable_address)
        except (BlockingIOError, InterruptedError):
            logger.debug("UDP send would block, datagram dropped")
            return False
        except OSError as e:
            logger.debug(f"UDP send failed: {e}")
            return False
        return True

    # =========================================================================
    # TEARDOWN
    # =========================================================================

    @property
    def is_open(self) -> bool:
        return self._tcp is not None or self._udp is not None

    def close(self):
        """Close both channels. Safe to call repeatedly."""
        for sock in (self._tcp, self._udp):
            if sock is not None:
                try:
                    sock.close()
                except OSError:
                    pass
        self._tcp = None
        self._udp = None
        self.reliable_connected = False
        self._send_buffer.clear()


class AddressResolver:
    """Resolve a host name without blocking the frame loop.

    IP literals resolve immediately. Names are looked up on a daemon helper
    thread and handed back through a queue read with get_nowait().
    """

    def __init__(self, host: str):
        self.host = host
        self._results: Queue = Queue()
        self._done = False
        self.address: Optional[str] = None
        self.error: Optional[str] = None

        try:
            ipaddress.IPv4Address(host)
        except ValueError:
            thread = threading.Thread(target=self._lookup, name=f"resolve-{host}", daemon=True)
            thread.start()
        else:
            self._results.put((host, None))

    def _lookup(self):
        try:
            infos = socket.getaddrinfo(self.host, None, socket.AF_INET, socket.SOCK_STREAM)
        except OSError as e:
            self._results.put((None, str(e)))
            return
        if not infos:
            self._results.put((None, "no addresses"))
            return
        self._results.put((infos[0][4][0], None))

    def poll(self) -> bool:
        """True once resolution finished (successfully or not)."""
        if self._done:
            return True
        try:
            self.address, self.error = self._results.get_nowait()
        except Empty:
            return False
        self._done = True
        return True
