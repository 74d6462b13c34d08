"""Threaded TCP broker: topics, subscriptions and at-least-once fan-out."""

from __future__ import annotations

import queue
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from .logx import COLOR_CYAN, Logger
from .protocol import (
    CLIENT_SEND_SIZE,
    DELIVERY_RETRY_INTERVAL,
    TOPIC_INBOX_SIZE,
    Frame,
    ProtocolError,
    decode_frame,
    encode_frame,
)

broker_log = Logger("BROKER", COLOR_CYAN)

# How often blocked loops wake up to look at their stop signals.
_POLL = 0.1
_ACCEPT_RETRY_DELAY = 0.1


class BrokerError(Exception):
    """The broker was used in a state that does not allow the operation."""


def delivery_key(topic: str, message_id: str) -> str:
    """Return the key under which an unconfirmed delivery is tracked."""
    return f"{topic}|{message_id}"


def _host_port(addr: str | tuple[str, int]) -> tuple[str, int]:
    if isinstance(addr, tuple):
        host, port = addr
        return host, int(port)
    host, sep, port_text = addr.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {addr!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"invalid port in address {addr!r}") from None
    return host, port


def _format_addr(peer: tuple) -> str:
    host, port = peer[0], peer[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _shutdown(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass


class _ClientConn:
    """One connected client and its outgoing queue and pending deliveries."""

    def __init__(self, sock: socket.socket, addr: str) -> None:
        self.sock = sock
        self.addr = addr
        self.send: queue.Queue[Frame] = queue.Queue(CLIENT_SEND_SIZE)
        self.subs: set[str] = set()
        self.quit = threading.Event()
        self.pending: dict[str, Frame] = {}
        self.pending_lock = threading.Lock()
        self._close_lock = threading.Lock()
        self._closed = False

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self.quit.set()
        _shutdown(self.sock)
        self.sock.close()


@dataclass(eq=False)
class _Topic:
    name: str
    inbox: queue.Queue = field(default_factory=lambda: queue.Queue(TOPIC_INBOX_SIZE))
    quit: threading.Event = field(default_factory=threading.Event)
    subs: set = field(default_factory=set)


class Broker:
    """Accepts clients over TCP and routes published messages to subscribers.

    Every message handed to a subscriber stays pending until the subscriber
    confirms it with a ``delivery_ack`` frame, and is re-sent every
    ``retry_interval`` seconds until then.
    """

    def __init__(
        self,
        logger: Logger | None = None,
        retry_interval: float = DELIVERY_RETRY_INTERVAL,
    ) -> None:
        self._log = logger if logger is not None else broker_log
        self._retry_interval = retry_interval
        self._lock = threading.Lock()
        self._topics: dict[str, _Topic] = {}
        self._clients: set[_ClientConn] = set()
        self._listener: socket.socket | None = None
        self._quit = threading.Event()
        self._threads: list[threading.Thread] = []
        self._threads_lock = threading.Lock()
        self._handlers: dict[str, Callable[[_ClientConn, Frame], None]] = {
            "subscribe": self._handle_subscribe,
            "publish": self._handle_publish,
            "unsubscribe": self._handle_unsubscribe,
            "delivery_ack": self._handle_delivery_ack,
        }

    # -- lifecycle ---------------------------------------------------------

    def start(self, addr: str | tuple[str, int]) -> None:
        """Listen on ``addr`` ("host:port", ":port" or a tuple) and accept clients."""
        if self._listener is not None:
            raise BrokerError("broker already started")
        if self._quit.is_set():
            raise BrokerError("broker was stopped")
        listener = socket.create_server(_host_port(addr))
        listener.settimeout(_POLL)
        self._listener = listener
        self._log.info("Escutando em %s", addr)
        self._spawn(self._accept_loop, listener, name="broker-accept")

    def stop(self) -> None:
        """Close the listener and every client, then wait for all threads."""
        listener = self._listener
        if listener is None:
            raise BrokerError("broker not started")
        self._log.info("Encerrando broker...")
        self._quit.set()
        self._listener = None
        listener.close()

        with self._lock:
            for c in self._clients:
                _shutdown(c.sock)
            for t in self._topics.values():
                t.quit.set()

        current = threading.current_thread()
        while True:
            with self._threads_lock:
                if not self._threads:
                    break
                thread = self._threads.pop()
            if thread is not current:
                thread.join()

    def address(self) -> tuple[str, int]:
        """Return the (host, port) the broker is bound to."""
        if self._listener is None:
            raise BrokerError("broker not started")
        name = self._listener.getsockname()
        return name[0], name[1]

    def _spawn(self, target: Callable[..., None], *args: object, name: str) -> None:
        thread = threading.Thread(target=target, args=args, name=name, daemon=True)
        with self._threads_lock:
            self._threads.append(thread)
        thread.start()

    # -- connections -------------------------------------------------------

    def _accept_loop(self, listener: socket.socket) -> None:
        self._log.info("Loop de aceitacao iniciado")
        while True:
            try:
                sock, peer = listener.accept()
            except socket.timeout:
                if self._quit.is_set():
                    self._log.info("Loop de aceitacao finalizado")
                    return
                continue
            except OSError as exc:
                if self._quit.is_set():
                    self._log.info("Loop de aceitacao finalizado")
                    return
                self._log.warn("Falha ao aceitar conexao: %s", exc)
                time.sleep(_ACCEPT_RETRY_DELAY)
                continue

            sock.settimeout(None)
            remote = _format_addr(peer)
            self._log.info("Cliente conectado: %s", remote)
            c = _ClientConn(sock, remote)

            with self._lock:
                if self._quit.is_set():
                    c.close()
                    self._log.info("Loop de aceitacao finalizado")
                    return
                self._clients.add(c)

            self._spawn(self._writer_loop, c, name=f"broker-writer-{remote}")
            self._spawn(self._reader_loop, c, name=f"broker-reader-{remote}")
            self._spawn(self._delivery_retry_loop, c, name=f"broker-retry-{remote}")

    def _reader_loop(self, c: _ClientConn) -> None:
        self._log.debug("Reader iniciado para %s", c.addr)
        reason = "EOF"
        try:
            with c.sock.makefile("rb") as stream:
                for line in stream:
                    if not line.strip():
                        continue
                    try:
                        f = decode_frame(line)
                    except ProtocolError as exc:
                        reason = str(exc)
                        break
                    self._dispatch(c, f)
        except OSError as exc:
            reason = str(exc)
        finally:
            self._log.info("Cliente %s desconectou (reader): %s", c.addr, reason)
            self._cleanup_client(c)

    def _dispatch(self, c: _ClientConn, f: Frame) -> None:
        handler = self._handlers.get(f.type)
        if handler is None:
            self._log.warn("Frame desconhecido de %s: type=%s", c.addr, f.type)
            self._send_ack(c, f.id, False, "unknown frame type")
            return
        handler(c, f)

    def _writer_loop(self, c: _ClientConn) -> None:
        self._log.debug("Writer iniciado para %s", c.addr)
        while not c.quit.is_set():
            try:
                f = c.send.get(timeout=_POLL)
            except queue.Empty:
                continue
            try:
                c.sock.sendall(encode_frame(f))
            except (OSError, ProtocolError) as exc:
                self._log.info("Falha ao enviar para %s: %s", c.addr, exc)
                return

    def _cleanup_client(self, c: _ClientConn) -> None:
        self._log.info("Encerrando cliente %s", c.addr)
        with self._lock:
            for name in list(c.subs):
                t = self._topics.get(name)
                if t is None:
                    continue
                t.subs.discard(c)
                if not t.subs:
                    t.quit.set()
                    del self._topics[name]
                    self._log.info("Topico removido (sem inscritos): %s", name)
            self._clients.discard(c)

        with c.pending_lock:
            c.pending.clear()
        c.close()

    # -- at-least-once delivery --------------------------------------------

    def _enqueue_delivery(self, c: _ClientConn, msg: Frame) -> None:
        if not msg.id or not msg.topic:
            return
        key = delivery_key(msg.topic, msg.id)
        with c.pending_lock:
            c.pending.setdefault(key, msg)
        self._try_send(c, msg)

    def _handle_delivery_ack(self, c: _ClientConn, f: Frame) -> None:
        if not f.id or not f.topic:
            return
        with c.pending_lock:
            c.pending.pop(delivery_key(f.topic, f.id), None)

    def _delivery_retry_loop(self, c: _ClientConn) -> None:
        while not c.quit.wait(self._retry_interval):
            self._retry_pending(c)

    def _retry_pending(self, c: _ClientConn) -> None:
        with c.pending_lock:
            items = list(c.pending.values())
        for msg in items:
            self._try_send(c, msg)

    @staticmethod
    def _try_send(c: _ClientConn, msg: Frame) -> None:
        if c.quit.is_set():
            return
        try:
            c.send.put_nowait(msg)
        except queue.Full:
            pass  # the retry loop will send it again

    # -- request handlers --------------------------------------------------

    def _handle_subscribe(self, c: _ClientConn, f: Frame) -> None:
        if not f.topic:
            self._send_ack(c, f.id, False, "topic is required")
            return

        with self._lock:
            t = self._topics.get(f.topic)
            if t is None:
                t = _Topic(f.topic)
                self._topics[f.topic] = t
                self._spawn(self._topic_loop, t, name=f"broker-topic-{f.topic}")
                self._log.info("Topico criado: %s", f.topic)
            t.subs.add(c)
            c.subs.add(f.topic)

        self._log.info("Cliente %s inscrito em %s", c.addr, f.topic)
        self._send_ack(c, f.id, True)

    def _handle_publish(self, c: _ClientConn, f: Frame) -> None:
        if not f.topic:
            self._send_ack(c, f.id, False, "topic is required")
            return

        with self._lock:
            t = self._topics.get(f.topic)
        if t is None:
            self._log.warn(
                "Publish descartado (sem inscritos): topic=%s client=%s", f.topic, c.addr
            )
            self._send_ack(c, f.id, False, "no_subscribers")
            return

        msg = Frame(
            type="message",
            id=f.id or f"msg-{time.time_ns()}",
            topic=f.topic,
            data=f.data,
        )
        while not (t.quit.is_set() or c.quit.is_set()):
            try:
                t.inbox.put(msg, timeout=_POLL)
                break
            except queue.Full:
                continue

        self._log.debug("Publish aceito: topic=%s client=%s", f.topic, c.addr)
        self._send_ack(c, f.id, True)

    def _handle_unsubscribe(self, c: _ClientConn, f: Frame) -> None:
        if not f.topic:
            self._send_ack(c, f.id, False, "topic is required")
            return

        with self._lock:
            t = self._topics.get(f.topic)
            if t is None:
                found = False
            else:
                found = True
                t.subs.discard(c)
                c.subs.discard(f.topic)
                if not t.subs:
                    del self._topics[f.topic]
                    t.quit.set()
                    self._log.info("Topico removido (sem inscritos): %s", f.topic)

        if not found:
            self._send_ack(c, f.id, False, "topic not found")
            return

        self._log.info("Cliente %s saiu de %s", c.addr, f.topic)
        self._send_ack(c, f.id, True)

    @staticmethod
    def _send_ack(c: _ClientConn, frame_id: str, ok: bool, error: str = "") -> None:
        ack = Frame(type="ack", id=frame_id, ok=ok, error=error)
        while not c.quit.is_set():
            try:
                c.send.put(ack, timeout=_POLL)
                return
            except queue.Full:
                continue

    # -- topics ------------------------------------------------------------

    def _topic_loop(self, t: _Topic) -> None:
        self._log.info("Loop do topico iniciado: %s", t.name)
        while not (t.quit.is_set() or self._quit.is_set()):
            try:
                msg = t.inbox.get(timeout=_POLL)
            except queue.Empty:
                continue
            with self._lock:
                subs = list(t.subs)
            self._log.debug("Fanout topic=%s subs=%d", t.name, len(subs))
            for c in subs:
                self._enqueue_delivery(c, msg)
        self._log.info("Loop do topico finalizado: %s", t.name)