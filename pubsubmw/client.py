"""Pub/sub client with topic affinity, failover and at-least-once delivery."""

from __future__ import annotations

import itertools
import json
import queue
import socket
import threading
import time
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Iterator

from .protocol import (
    ACK_TIMEOUT,
    BROKER_SEND_SIZE,
    SUB_BUFFER_SIZE,
    Frame,
    ProtocolError,
    decode_frame,
    encode_frame,
)
from .routing import broker_order, parse_broker_list, preferred_broker

REBALANCE_INTERVAL = 5.0
PUBLISH_RETRY_DELAY = 0.3

# How often blocked operations wake up to look at their stop signals.
_POLL = 0.1


class PubSubError(Exception):
    """A request to a broker failed or the client cannot serve it."""


class BrokerClosedError(PubSubError):
    """The connection to the broker closed before the request was sent."""

    def __init__(self, message: str = "broker connection closed") -> None:
        super().__init__(message)


class AckTimeoutError(PubSubError):
    """The broker did not answer a request in time."""

    def __init__(self, message: str = "ack timeout") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class Message:
    """A message received on a topic; ``data`` is the raw JSON payload."""

    topic: str
    data: str | None


class Subscription:
    """Bounded stream of messages for one topic.

    Iterating yields messages until the subscription is closed and drained.
    """

    def __init__(self, topic: str, capacity: int = SUB_BUFFER_SIZE) -> None:
        self.topic = topic
        self._capacity = capacity
        self._items: deque[Message] = deque()
        self._cond = threading.Condition()
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once the subscription no longer receives messages."""
        with self._cond:
            return self._closed

    def get(self, timeout: float | None = None) -> Message | None:
        """Return the next message, or None once closed and drained.

        Raises TimeoutError when ``timeout`` seconds pass without a message.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._items:
                if self._closed:
                    return None
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(f"no message on {self.topic!r}")
                self._cond.wait(remaining)
            msg = self._items.popleft()
            self._cond.notify_all()
            return msg

    def __iter__(self) -> Iterator[Message]:
        while (msg := self.get()) is not None:
            yield msg

    def _deliver(self, msg: Message, abort: threading.Event) -> bool:
        with self._cond:
            while len(self._items) >= self._capacity:
                if self._closed or abort.is_set():
                    return False
                self._cond.wait(_POLL)
            if self._closed:
                return False
            self._items.append(msg)
            self._cond.notify_all()
            return True

    def _close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


def _host_port(addr: str) -> tuple[str, int]:
    host, sep, port_text = addr.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {addr!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"invalid port in address {addr!r}") from None
    return host or "localhost", port


class _BrokerConn:
    """An open connection to one broker with its outgoing queue."""

    def __init__(self, addr: str, sock: socket.socket) -> None:
        self.addr = addr
        self.sock = sock
        self.send: queue.Queue[Frame] = queue.Queue(BROKER_SEND_SIZE)
        self.quit = threading.Event()
        self.threads: list[threading.Thread] = []
        self._close_lock = threading.Lock()
        self._closed = False

    def put(self, frame: Frame) -> bool:
        """Queue a frame for sending; False if the connection closed first."""
        while not self.quit.is_set():
            try:
                self.send.put(frame, timeout=_POLL)
                return True
            except queue.Full:
                continue
        return False

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self.quit.set()
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()

    def join(self) -> None:
        current = threading.current_thread()
        for thread in self.threads:
            if thread is not current:
                thread.join()


class Client:
    """Publishes and subscribes through one or more brokers.

    ``broker_addr`` is a comma-separated list of "host:port" entries. Each
    topic prefers one broker by hash and fails over to the others in order.
    """

    def __init__(
        self,
        broker_addr: str,
        *,
        ack_timeout: float = ACK_TIMEOUT,
        rebalance_interval: float = REBALANCE_INTERVAL,
        retry_delay: float = PUBLISH_RETRY_DELAY,
    ) -> None:
        self._brokers = parse_broker_list(broker_addr)
        self._ack_timeout = ack_timeout
        self._rebalance_interval = rebalance_interval
        self._retry_delay = retry_delay
        self._lock = threading.Lock()
        self._conns: dict[str, _BrokerConn] = {}
        self._subs: dict[str, Subscription] = {}
        self._sub_brokers: dict[str, str] = {}
        self._pending: dict[str, queue.Queue[Frame | None]] = {}
        self._rebalance_quit = threading.Event()
        self._ids = itertools.count(1)
        self._ids_lock = threading.Lock()
        self._closed = False
        threading.Thread(
            target=self._rebalance_loop, name="client-rebalance", daemon=True
        ).start()

    @property
    def brokers(self) -> tuple[str, ...]:
        """The configured broker addresses."""
        return tuple(self._brokers)

    # -- public API --------------------------------------------------------

    def publish(self, topic: str, data: Any) -> None:
        """Serialize ``data`` as JSON and publish it on ``topic``."""
        if not topic:
            raise PubSubError("topic is required")
        payload = json.dumps(data, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
        bc = self._conn_for_topic(topic)
        self._send_and_wait(bc, Frame(type="publish", topic=topic, data=payload))

    def subscribe(self, topic: str) -> Subscription:
        """Subscribe to ``topic``; subscribing twice returns the same stream."""
        if not topic:
            raise PubSubError("topic is required")
        bc = self._conn_for_topic(topic)

        with self._lock:
            if self._closed:
                raise PubSubError("client is closed")
            existing = self._subs.get(topic)
            if existing is not None:
                return existing
            sub = Subscription(topic)
            self._subs[topic] = sub

        try:
            self._send_and_wait(bc, Frame(type="subscribe", topic=topic))
        except PubSubError:
            with self._lock:
                if self._subs.get(topic) is sub:
                    del self._subs[topic]
            sub._close()
            raise

        with self._lock:
            self._sub_brokers[topic] = bc.addr
        return sub

    def unsubscribe(self, topic: str) -> None:
        """Leave ``topic`` and close its subscription stream."""
        if not topic:
            raise PubSubError("topic is required")
        bc = self._conn_for_topic(topic)
        self._send_and_wait(bc, Frame(type="unsubscribe", topic=topic))

        with self._lock:
            sub = self._subs.pop(topic, None)
            self._sub_brokers.pop(topic, None)
        if sub is not None:
            sub._close()

    def close(self) -> None:
        """Close every subscription and connection; safe to call twice."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._rebalance_quit.set()
            subs = list(self._subs.values())
            waiters = list(self._pending.values())
            conns = list(self._conns.values())
            self._subs.clear()
            self._sub_brokers.clear()
            self._pending.clear()
            self._conns.clear()

        for sub in subs:
            sub._close()
        for waiter in waiters:
            try:
                waiter.put_nowait(None)
            except queue.Full:
                pass
        for bc in conns:
            bc.close()
            bc.join()

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # -- connections -------------------------------------------------------

    def _next_id(self) -> str:
        with self._ids_lock:
            return f"req-{next(self._ids)}"

    def _conn_for_topic(self, topic: str) -> _BrokerConn:
        order = broker_order(self._brokers, topic)
        if not order:
            raise PubSubError("broker address is required")
        last_error: PubSubError | None = None
        for addr in order:
            try:
                return self._get_conn(addr)
            except PubSubError as exc:
                last_error = exc
        raise last_error if last_error is not None else PubSubError("no brokers available")

    def _get_conn(self, addr: str) -> _BrokerConn:
        with self._lock:
            if self._closed:
                raise PubSubError("client is closed")
            existing = self._conns.get(addr)
            if existing is not None:
                return existing

        try:
            sock = socket.create_connection(_host_port(addr))
        except (OSError, ValueError) as exc:
            raise PubSubError(f"dial {addr}: {exc}") from exc
        sock.settimeout(None)

        bc = _BrokerConn(addr, sock)
        for target, name in ((self._writer_loop, "writer"), (self._reader_loop, "reader")):
            thread = threading.Thread(
                target=target, args=(bc,), name=f"client-{name}-{addr}", daemon=True
            )
            bc.threads.append(thread)
            thread.start()

        with self._lock:
            if self._closed:
                winner = None
            else:
                winner = self._conns.get(addr)
                if winner is None:
                    self._conns[addr] = bc
                    return bc
        bc.close()
        bc.join()
        if winner is None:
            raise PubSubError("client is closed")
        return winner

    def _writer_loop(self, bc: _BrokerConn) -> None:
        while not bc.quit.is_set():
            try:
                f = bc.send.get(timeout=_POLL)
            except queue.Empty:
                continue
            try:
                bc.sock.sendall(encode_frame(f))
            except (OSError, ProtocolError):
                pass

    def _reader_loop(self, bc: _BrokerConn) -> None:
        try:
            with bc.sock.makefile("rb") as stream:
                for line in stream:
                    if not line.strip():
                        continue
                    try:
                        f = decode_frame(line)
                    except ProtocolError:
                        break
                    if f.type == "message":
                        self._dispatch_message(bc, f)
                    elif f.type == "ack":
                        self._dispatch_ack(f)
        except (OSError, ValueError):
            pass
        finally:
            bc.close()
            self._remove_conn(bc.addr, bc)

    def _dispatch_message(self, bc: _BrokerConn, f: Frame) -> None:
        if not f.topic:
            return
        with self._lock:
            sub = self._subs.get(f.topic)
        if sub is None:
            return
        if not sub._deliver(Message(f.topic, f.data), bc.quit):
            return
        if not f.id:
            return
        bc.put(Frame(type="delivery_ack", id=f.id, topic=f.topic))

    def _dispatch_ack(self, f: Frame) -> None:
        if not f.id:
            return
        with self._lock:
            waiter = self._pending.pop(f.id, None)
        if waiter is not None:
            try:
                waiter.put_nowait(f)
            except queue.Full:
                pass

    def _send_and_wait(self, bc: _BrokerConn, f: Frame) -> None:
        if not f.id:
            f = replace(f, id=self._next_id())
        while True:
            try:
                self._send_once_and_wait(bc, f)
                return
            except (AckTimeoutError, BrokerClosedError) as exc:
                error = exc
            time.sleep(self._retry_delay)
            try:
                bc = self._conn_for_topic(f.topic)
            except PubSubError:
                raise error from None

    def _send_once_and_wait(self, bc: _BrokerConn, f: Frame) -> None:
        waiter: queue.Queue[Frame | None] = queue.Queue(1)
        with self._lock:
            if self._closed:
                raise PubSubError("client is closed")
            self._pending[f.id] = waiter

        if not bc.put(f):
            with self._lock:
                self._pending.pop(f.id, None)
            raise BrokerClosedError()

        try:
            ack = waiter.get(timeout=self._ack_timeout)
        except queue.Empty:
            with self._lock:
                self._pending.pop(f.id, None)
            raise AckTimeoutError() from None

        if ack is None or not ack.ok:
            message = ack.error if ack is not None and ack.error else "request failed"
            raise PubSubError(message)

    def _remove_conn(self, addr: str, bc: _BrokerConn) -> None:
        with self._lock:
            if self._conns.get(addr) is bc:
                del self._conns[addr]
        threading.Thread(
            target=self._recover_subscriptions,
            args=(addr,),
            name=f"client-recover-{addr}",
            daemon=True,
        ).start()

    # -- failover and rebalancing -----------------------------------------

    def _recover_subscriptions(self, bad_addr: str) -> None:
        with self._lock:
            if self._closed:
                return
            topics = [t for t, addr in self._sub_brokers.items() if addr == bad_addr]

        for topic in topics:
            try:
                bc = self._conn_for_topic(topic)
                self._send_and_wait(bc, Frame(type="subscribe", topic=topic))
            except PubSubError:
                continue
            with self._lock:
                if not self._closed:
                    self._sub_brokers[topic] = bc.addr

    def _rebalance_loop(self) -> None:
        while not self._rebalance_quit.wait(self._rebalance_interval):
            self._rebalance_subscriptions()

    def _rebalance_subscriptions(self) -> None:
        with self._lock:
            if self._closed:
                return
            current = {topic: self._sub_brokers.get(topic, "") for topic in self._subs}

        for topic, old in current.items():
            preferred = preferred_broker(self._brokers, topic)
            if not preferred or old == preferred:
                continue
            try:
                bc = self._get_conn(preferred)
                self._send_and_wait(bc, Frame(type="subscribe", topic=topic))
            except PubSubError:
                continue

            with self._lock:
                if not self._closed:
                    self._sub_brokers[topic] = preferred

            if old and old != preferred:
                try:
                    old_conn = self._get_conn(old)
                    self._send_and_wait(old_conn, Frame(type="unsubscribe", topic=topic))
                except PubSubError:
                    pass