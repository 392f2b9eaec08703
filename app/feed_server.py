# app/feed_server.py

import logging
import queue
import socket
import threading
from typing import List, Optional, Tuple
from core.constants import ACCEPT_POLL_INTERVAL_S, CLIENT_SEND_TIMEOUT_S, NEW_CLIENT_QUEUE_SIZE

logger = logging.getLogger(__name__)

class FeedServerError(Exception):
    pass

class SpectrumFeedServer:
    """
    Broadcasts JSON spectra to every connected TCP client, one object per line.
    Clients whose write fails are dropped.
    """
    def __init__(self, listen_addr: Tuple[str, int], spectrum_queue: queue.Queue):
        try:
            self.listen_socket = socket.create_server(listen_addr)
        except OSError as e:
            raise FeedServerError(f"Failed to bind listening socket {listen_addr[0]}:{listen_addr[1]}") from e
        self.listen_socket.settimeout(ACCEPT_POLL_INTERVAL_S)
        self.spectrum_queue = spectrum_queue
        self.address = self.listen_socket.getsockname()[:2]
        self._new_clients: "queue.Queue[socket.socket]" = queue.Queue(maxsize=NEW_CLIENT_QUEUE_SIZE)
        self._stopping = threading.Event()
        self._accept_finished = threading.Event()
        self._clients: List[socket.socket] = []
        self._accept_thread: Optional[threading.Thread] = None
        self._send_thread: Optional[threading.Thread] = None
        logger.info("SpectrumFeedServer listening on %s:%d", *self.address)

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def start(self):
        self._accept_thread = threading.Thread(target=self._accept_loop, name="feed-accept", daemon=True)
        self._send_thread = threading.Thread(target=self.run, name="feed-send", daemon=True)
        self._accept_thread.start()
        self._send_thread.start()

    def stop(self, timeout: float = 2.0):
        self._stopping.set()
        if self._accept_thread is None:
            self.listen_socket.close()
            return
        self._accept_thread.join(timeout)
        try:
            self.spectrum_queue.put(None, timeout=timeout)
        except queue.Full:
            logger.warning("SpectrumFeedServer could not queue shutdown")
        if self._send_thread is not None:
            self._send_thread.join(timeout)

    def _accept_loop(self):
        try:
            while not self._stopping.is_set():
                try:
                    client, addr = self.listen_socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    logger.error("Failed to accept incoming connection: %s", e)
                    continue
                client.settimeout(CLIENT_SEND_TIMEOUT_S)
                try:
                    self._new_clients.put_nowait(client)
                except queue.Full:
                    logger.warning("Too many pending clients, refusing %s:%d", *addr[:2])
                    client.close()
        finally:
            self.listen_socket.close()
            self._accept_finished.set()
            logger.debug("SpectrumFeedServer listen thread exiting")

    def _register_new_clients(self):
        while True:
            try:
                client = self._new_clients.get_nowait()
            except queue.Empty:
                return
            try:
                peer = "%s:%d" % client.getpeername()[:2]
            except OSError:
                peer = "<disconnected>"
            logger.info("New client connected from %s", peer)
            self._clients.append(client)

    def broadcast(self, spectrum: str):
        self._register_new_clients()
        data = spectrum.encode("utf-8") + b"\n"
        alive = []
        for client in self._clients:
            try:
                client.sendall(data)
            except OSError as e:
                logger.error("Failed to send spectrum data: %s", e)
                client.close()
            else:
                alive.append(client)
        self._clients = alive

    def run(self):
        try:
            while not self._accept_finished.is_set():
                spectrum = self.spectrum_queue.get()
                if spectrum is None:
                    break
                self.broadcast(spectrum)
        finally:
            for client in self._clients:
                client.close()
            self._clients = []
            logger.debug("SpectrumFeedServer send thread exiting")
