# matchbook

matchbook is an order matching engine. Clients connect to it over a Unix
domain socket and send buy, sell and cancel commands. The engine keeps a
price-time priority order book for each instrument. It matches each incoming
order against resting orders on the other side of the book and writes every
event to standard output as one line.

The engine and the client use Unix domain sockets and `select.poll`, so they
run on POSIX systems only.

## Installation

```
pip install .
```

To also install the test dependencies:

```
pip install ".[test]"
```

## Running the engine

Start the engine and give it the path of the socket to create:

```
matchbook-server /tmp/matchbook.sock
```

The engine accepts any number of clients at once and serves each one on its
own thread. If it receives SIGINT or SIGTERM, it closes the socket, removes
the socket file and exits with status 0. If the socket cannot be bound, for
example because the path already exists, it prints the error and exits with
status 1.

The engine also writes a line to standard error for each command it
receives (`Got Buy: ID: <id>`, `Got Sell: ID: <id>`, `Got cancel: ID: <id>`).
If a connection sends a truncated or malformed command, the engine writes
`Error reading input` and drops that connection.

## Sending orders

The client reads commands from standard input, one per line, and sends them
to the engine:

```
matchbook-client /tmp/matchbook.sock < orders.txt
```

Input format:

```
# comment lines and blank lines are ignored
B <order id> <instrument> <price> <count>
S <order id> <instrument> <price> <count>
C <order id>
```

- `B` is a buy order and `S` is a sell order.
- `C` cancels an earlier order that was sent on the same connection.
- An instrument name is at most 8 characters long.
- Order ids, prices and counts are unsigned 32-bit integers.

The client stops at the first line it cannot parse, prints why on standard
error and exits with status 1. If the engine closes the connection, the
client prints `Connection closed by server` and exits.

## Engine output

Each line the engine prints is one of these events:

| Line | Meaning |
| --- | --- |
| `B <id> <instrument> <price> <count> <timestamp>` | A buy order rests on the book with its remaining count |
| `S <id> <instrument> <price> <count> <timestamp>` | A sell order rests on the book with its remaining count |
| `E <resting id> <new id> <execution id> <price> <count> <timestamp>` | A trade at the resting order's price |
| `X <id> A <timestamp>` | A cancel was accepted |
| `X <id> R <timestamp>` | A cancel was rejected: the order was already filled or cancelled, or this connection never sent it |

Timestamps are monotonic clock readings in nanoseconds.

Matching works as follows:

- A buy matches the lowest-priced sells first, as long as their price is not
  above the buy's price. A sell matches the highest-priced buys first, as
  long as their price is not below the sell's price.
- Orders at the same price are filled in the order they were added to the
  book.
- Each resting order numbers its own executions, starting from 1.
- For one incoming order, the line that rests its remainder (if any) is
  printed before the lines for its executions.

## Using it as a library

- `matchbook.protocol.ClientCommand` holds one command. `pack()` encodes it
  into the fixed-size binary form, and `ClientCommand.unpack(data)` decodes
  it. Both raise `matchbook.protocol.ProtocolError` on bad input.
- `matchbook.protocol.ClientConnection` wraps a connected socket.
  `read_command()` returns the next command, or `None` at the end of the
  stream. Iterating over the connection yields its commands.
- `matchbook.protocol.SyncWriter` writes whole lines to a stream, one thread
  at a time. `format_order_added`, `format_order_executed` and
  `format_order_deleted` build the output lines.
- `matchbook.client.parse_line(line)` turns one line of input into a
  `ClientCommand`. It returns `None` for blank and comment lines and raises
  `ValueError` for invalid lines.
- `matchbook.engine.Engine(output=None, log=None)` is the matching engine.
  Both arguments are `SyncWriter`s and default to standard output and
  standard error. `accept(connection)` serves a `ClientConnection` on a
  daemon thread, and `handle_connection(connection)` serves it on the
  calling thread. `match_buy` and `match_sell` return the list of
  `Execution`s they made. `cancel_order` returns whether the cancel was
  accepted.
- `matchbook.server.serve(socket_path, engine)` runs the accept loop on a
  socket path with an engine you supply.

```python
import io
from matchbook.engine import Engine
from matchbook.protocol import ClientCommand, CommandType, SyncWriter

out = io.StringIO()
engine = Engine(output=SyncWriter(out), log=SyncWriter(io.StringIO()))
orders = {}
engine.match_sell(engine.create_order(ClientCommand(CommandType.SELL, 1, 100, 5, "ABC"), orders))
engine.match_buy(engine.create_order(ClientCommand(CommandType.BUY, 2, 100, 3, "ABC"), orders))
print(out.getvalue())
```

## What it does not do

The engine keeps its books in memory only. Nothing is saved when it stops.
It has no way to query the book, and a cancel reaches only orders sent on the
same connection. Results go to the engine's standard output and are not sent
back to clients.

## Running the tests

```
pytest
```