# pubsubmw

A small publish/subscribe middleware over TCP, with no dependencies beyond
the standard library. Clients and brokers exchange newline-delimited JSON
frames (`subscribe`, `publish`, `unsubscribe`, `message`, `ack`,
`delivery_ack`).

- Topics are created on demand when the first subscriber arrives and removed
  when the last one leaves. Publishing to a topic with no subscribers is
  rejected with the error `no_subscribers`.
- At-least-once delivery: the broker keeps every message it sent to a
  subscriber until that subscriber confirms it with a `delivery_ack`, and
  resends unconfirmed messages every two seconds. A subscriber may therefore
  see the same message more than once.
- Several brokers can be listed. Each topic is assigned to a preferred broker
  by a 32-bit FNV-1a hash of its name; when that broker is unreachable the
  client fails over to the next one in the list. Every five seconds the
  client moves subscriptions back to their preferred broker if it is
  reachable again.

## Installation

```
pip install .
```

Tests need the `test` extra:

```
pip install .[test]
pytest
```

## Running a broker

```
pubsubmw-broker --addr :9000
```

`--addr` (also `-addr`) takes `host:port`; an empty host listens on all
interfaces, and `:9000` is the default. The broker runs until Ctrl+C or
SIGTERM and then closes every connection. To run a second broker, start one
on another port:

```
pubsubmw-broker --addr :9001
```

A broker can also be run from Python:

```python
from pubsubmw.broker import Broker

broker = Broker()
broker.start("127.0.0.1:0")      # or ("127.0.0.1", 0)
host, port = broker.address()
...
broker.stop()
```

`Broker(retry_interval=...)` changes how often unconfirmed deliveries are
resent. `start` raises `BrokerError` if the broker is already running or was
stopped; `stop` and `address` raise it if the broker was never started.

## Using the client

```python
from pubsubmw.client import Client

with Client("localhost:9000,localhost:9001") as client:
    subscription = client.subscribe("temperatura_maquina")
    client.publish("temperatura_maquina", {"valor": 72.5, "unit": "C"})

    message = subscription.get(timeout=5)
    print(message.topic, message.data)
```

- `Client(broker_addr)` takes a comma-separated list of `host:port` entries
  and raises `ValueError` if the list is empty. Keyword options:
  `ack_timeout` (default 5 s), `rebalance_interval` (default 5 s) and
  `retry_delay` (default 0.3 s).
- `publish(topic, data)` serialises `data` as JSON and waits for the broker's
  acknowledgement. It raises `PubSubError` when the broker refuses the
  request, for example with `no_subscribers`.
- `subscribe(topic)` returns a `Subscription`. Read messages with
  `get(timeout=None)`, which returns a `Message` (`topic` and the raw JSON
  text in `data`), returns `None` once the subscription is closed and
  drained, and raises `TimeoutError` when the timeout passes; or iterate over
  it until it is closed. Subscribing twice to the same topic returns the same
  subscription.
- `unsubscribe(topic)` leaves the topic and closes its subscription.
- `close()` closes every subscription and broker connection; calling it
  twice is harmless. The client is also a context manager.

An acknowledgement that does not arrive in time (`AckTimeoutError`) or a
connection that closes before the request is sent (`BrokerClosedError`) is
retried after a short pause on the next reachable broker; the error is
raised only when no broker can be reached. Both are subclasses of
`PubSubError`.

The lower-level pieces are available too: `pubsubmw.protocol` (`Frame`,
`encode_frame`, `decode_frame`, `ProtocolError`), `pubsubmw.routing`
(`fnv1a_32`, `parse_broker_list`, `broker_order`, `preferred_broker`) and
`pubsubmw.logx` (`Logger` with `info`, `warn`, `error`, `debug`).

## Demo: an industrial IoT scenario

The demo publishes simulated sensor readings on four topics:
`temperatura_maquina` (every 2 s), `pressao` (3 s), `falha_motor` (5 s) and
`consumo_energia` (4 s).

Start the publisher:

```
pubsubmw-demo --mode publisher
```

Start a dashboard subscriber (every topic except `consumo_energia`):

```
pubsubmw-demo --mode subscriber --role painel
```

Or a maintenance-alert subscriber (all four topics):

```
pubsubmw-demo --mode subscriber --role alertas
```

An unknown role falls back to `painel`; an unknown mode prints a usage hint
and exits with status 1. Stop any of them with Ctrl+C. Keep a subscriber
running before starting the publisher, or its publishes are rejected with
`no_subscribers`.

### Configuration

The demo reads the broker list from the `BROKER_ADDR` environment variable.
A `.env` file in the current directory (`KEY=VALUE` lines, `#` comments) is
read once and fills in variables that are not already set. Without either,
`localhost:9000,localhost:9001` is used.

```
BROKER_ADDR=localhost:9000,localhost:9001
```

Log lines are coloured; set `NO_COLOR` or `LOG_NO_COLOR` to any non-empty
value to print plain text.

## What it does not do

- Messages live only in memory. Nothing is written to disk, so a broker that
  stops loses its topics and unconfirmed deliveries, and messages published
  while a topic has no subscribers are not kept.
- Brokers do not talk to each other; failover is done entirely by the client.
- There is no authentication or encryption on the connections.