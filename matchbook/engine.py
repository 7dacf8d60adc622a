"""Price-time priority order matching across concurrent client connections."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, ClassVar, Dict, Iterator, List, Optional, Tuple

from sortedcontainers import SortedKeyList

from matchbook.protocol import (
    ClientCommand,
    ClientConnection,
    CommandType,
    ProtocolError,
    SyncWriter,
    format_order_added,
    format_order_deleted,
    format_order_executed,
)


def current_timestamp() -> int:
    """Monotonic clock reading in nanoseconds."""
    return time.monotonic_ns()


@dataclass(eq=False)
class Order:
    """A resting or incoming order; its count is guarded by its lock."""

    is_buy: ClassVar[bool] = False

    order_id: int
    instrument: str
    price: int
    count: int
    timestamp: int
    execution_id: int = 1
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def sort_key(self) -> Tuple[int, int]:
        raise NotImplementedError


class BuyOrder(Order):
    """Buy order: highest price first, then earliest."""

    is_buy: ClassVar[bool] = True

    def sort_key(self) -> Tuple[int, int]:
        return (-self.price, self.timestamp)


class SellOrder(Order):
    """Sell order: lowest price first, then earliest."""

    is_buy: ClassVar[bool] = False

    def sort_key(self) -> Tuple[int, int]:
        return (self.price, self.timestamp)


@dataclass(frozen=True)
class Execution:
    """A fill between a resting order and an incoming one."""

    resting_id: int
    new_id: int
    execution_id: int
    price: int
    count: int
    timestamp: int


class _Lightswitch:
    """Lets any number of holders of one kind share a room lock."""

    def __init__(self) -> None:
        self._count = 0
        self._lock = threading.Lock()

    def enter(self, room: threading.Lock) -> None:
        with self._lock:
            self._count += 1
            if self._count == 1:
                room.acquire()

    def leave(self, room: threading.Lock) -> None:
        with self._lock:
            self._count -= 1
            if self._count == 0:
                room.release()


class BuySellMutex:
    """Many buys may proceed together, or many sells, but never both."""

    def __init__(self) -> None:
        self._room = threading.Lock()
        self._buyers = _Lightswitch()
        self._sellers = _Lightswitch()

    @contextmanager
    def buy_side(self) -> Iterator[None]:
        self._buyers.enter(self._room)
        try:
            yield
        finally:
            self._buyers.leave(self._room)

    @contextmanager
    def sell_side(self) -> Iterator[None]:
        self._sellers.enter(self._room)
        try:
            yield
        finally:
            self._sellers.leave(self._room)


@dataclass(eq=False)
class _InstrumentBook:
    buys: SortedKeyList = field(default_factory=lambda: SortedKeyList(key=BuyOrder.sort_key))
    sells: SortedKeyList = field(default_factory=lambda: SortedKeyList(key=SellOrder.sort_key))
    mutex: BuySellMutex = field(default_factory=BuySellMutex)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def snapshot(self, side: SortedKeyList) -> List[Order]:
        with self.lock:
            return list(side)

    def add(self, side: SortedKeyList, order: Order) -> None:
        with self.lock:
            side.add(order)


class Engine:
    """Matches orders from any number of connections and reports results."""

    def __init__(self, output: Optional[SyncWriter] = None, log: Optional[SyncWriter] = None) -> None:
        self._output = output if output is not None else SyncWriter()
        if log is None:
            import sys

            log = SyncWriter(sys.stderr)
        self._log = log
        self._books: Dict[str, _InstrumentBook] = {}
        self._books_lock = threading.Lock()

    def _book(self, instrument: str) -> _InstrumentBook:
        with self._books_lock:
            book = self._books.get(instrument)
            if book is None:
                book = self._books[instrument] = _InstrumentBook()
            return book

    def accept(self, connection: ClientConnection) -> threading.Thread:
        """Serve a connection on its own daemon thread."""
        thread = threading.Thread(target=self.handle_connection, args=(connection,), daemon=True)
        thread.start()
        return thread

    def handle_connection(self, connection: ClientConnection) -> None:
        """Process commands from one connection until it ends."""
        orders: Dict[int, Order] = {}
        with connection:
            while True:
                try:
                    command = connection.read_command()
                except ProtocolError:
                    self._log.write_line("Error reading input")
                    return
                if command is None:
                    return
                if command.type is CommandType.BUY:
                    self._log.write_line(f"Got Buy: ID: {command.order_id}")
                    self.match_buy(self.create_order(command, orders))
                elif command.type is CommandType.SELL:
                    self._log.write_line(f"Got Sell: ID: {command.order_id}")
                    self.match_sell(self.create_order(command, orders))
                else:
                    self._log.write_line(f"Got cancel: ID: {command.order_id}")
                    self.cancel_order(command, orders)

    def create_order(self, command: ClientCommand, orders: Dict[int, Order]) -> Order:
        """Build the order a buy or sell command describes and register it."""
        if command.type is CommandType.BUY:
            order_class: type = BuyOrder
        elif command.type is CommandType.SELL:
            order_class = SellOrder
        else:
            raise ValueError(f"command {command.type.name} does not create an order")
        order = order_class(
            command.order_id, command.instrument, command.price, command.count, current_timestamp()
        )
        orders[command.order_id] = order
        return order

    def match_buy(self, order: BuyOrder) -> List[Execution]:
        """Match a buy against resting sells; rest any remainder."""
        book = self._book(order.instrument)
        return self._match(
            order,
            book,
            guard=book.mutex.buy_side,
            opposite=book.sells,
            own=book.buys,
            too_far=lambda resting: resting.price > order.price,
            is_sell_side=False,
        )

    def match_sell(self, order: SellOrder) -> List[Execution]:
        """Match a sell against resting buys; rest any remainder."""
        book = self._book(order.instrument)
        return self._match(
            order,
            book,
            guard=book.mutex.sell_side,
            opposite=book.buys,
            own=book.sells,
            too_far=lambda resting: resting.price < order.price,
            is_sell_side=True,
        )

    def _match(
        self,
        order: Order,
        book: _InstrumentBook,
        *,
        guard: Callable,
        opposite: SortedKeyList,
        own: SortedKeyList,
        too_far: Callable[[Order], bool],
        is_sell_side: bool,
    ) -> List[Execution]:
        executions: List[Execution] = []
        remaining: Optional[int] = None
        with guard():
            for resting in book.snapshot(opposite):
                with resting.lock:
                    if order.count <= 0 or too_far(resting):
                        break
                    if resting.count <= 0:
                        continue
                    filled = min(resting.count, order.count)
                    order.count -= filled
                    resting.count -= filled
                    executions.append(
                        Execution(
                            resting.order_id,
                            order.order_id,
                            resting.execution_id,
                            resting.price,
                            filled,
                            current_timestamp(),
                        )
                    )
                    resting.execution_id += 1
            if order.count > 0:
                order.timestamp = current_timestamp()
                book.add(own, order)
                remaining = order.count

        if remaining is not None:
            self._output.write_line(
                format_order_added(
                    order.order_id, order.instrument, order.price, remaining, is_sell_side, order.timestamp
                )
            )
        for execution in executions:
            self._output.write_line(
                format_order_executed(
                    execution.resting_id,
                    execution.new_id,
                    execution.execution_id,
                    execution.price,
                    execution.count,
                    execution.timestamp,
                )
            )
        return executions

    def cancel_order(self, command: ClientCommand, orders: Dict[int, Order]) -> bool:
        """Cancel an order of this connection; report whether any of it was left."""
        order = orders.get(command.order_id)
        accepted = False
        if order is not None:
            with order.lock:
                accepted = order.count > 0
                order.count = 0
        self._output.write_line(format_order_deleted(command.order_id, accepted, current_timestamp()))
        return accepted