"""
Protocol Command and Response Definitions

This module defines the data structures exchanged with a Tectonic server:
market data updates, outbound text commands and decoded responses.
"""

import json
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Union

Number = Union[int, float]

# Terminates a BULKADD batch ("BULKADD" reversed)
BULKADD_SENTINEL = "DDAKLUB"

# The server drops the two characters before " INTO " when slicing the data
INTO_PADDING = "  "


def _flag(value: bool) -> str:
    return "t" if value else "f"


def _format_number(value: Number) -> str:
    """Positional notation; the server cannot read exponents."""
    if isinstance(value, float):
        return format(Decimal(repr(value)), "f")
    return str(value)


def _parse_number(text: str) -> Number:
    try:
        return int(text)
    except ValueError:
        return float(text)


@dataclass
class Update:
    """
    A single market data tick.

    Attributes:
        ts: Timestamp (seconds with millisecond fraction, or integer millis)
        seq: Exchange sequence number
        is_trade: True for a trade, False for an order book change
        is_bid: True for the bid side
        price: Price level
        size: Size at the price level
    """
    ts: Number
    seq: int
    is_trade: bool
    is_bid: bool
    price: Number
    size: Number

    def to_line(self) -> str:
        """
        Format the update as a protocol data line.

        Examples:
            >>> Update(1505177459.658, 139010, False, True, 0.0703629, 7.65064249).to_line()
            '1505177459.658, 139010, f, t, 0.0703629, 7.65064249;'
        """
        return (
            f"{_format_number(self.ts)}, {self.seq}, {_flag(self.is_trade)}, "
            f"{_flag(self.is_bid)}, {_format_number(self.price)}, "
            f"{_format_number(self.size)};"
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Update":
        """Build an Update from a record returned by ``GET ... AS JSON``."""
        return cls(
            ts=data["ts"],
            seq=data["seq"],
            is_trade=bool(data["is_trade"]),
            is_bid=bool(data["is_bid"]),
            price=data["price"],
            size=data["size"],
        )

    @classmethod
    def parse(cls, line: str) -> "Update":
        """
        Parse a data line such as ``1505177459.658, 139010, f, t, 0.07, 7.6;``.

        Raises:
            ValueError: if the line does not hold six well-formed fields
        """
        body = line.strip()
        if body.endswith(";"):
            body = body[:-1]
        fields = [field.strip() for field in body.split(",")]
        if len(fields) != 6:
            raise ValueError(f"expected 6 fields, got {len(fields)}: {line!r}")

        ts, seq, is_trade, is_bid, price, size = fields
        for flag in (is_trade, is_bid):
            if flag not in ("t", "f"):
                raise ValueError(f"flag must be 't' or 'f', got {flag!r}")

        update = cls(
            ts=_parse_number(ts),
            seq=int(seq),
            is_trade=is_trade == "t",
            is_bid=is_bid == "t",
            price=_parse_number(price),
            size=_parse_number(size),
        )
        if update.price < 0 or update.size < 0:
            raise ValueError(f"price and size must be non-negative: {line!r}")
        return update


class CommandType(Enum):
    """Enumeration of supported command verbs and their wire keyword."""
    INFO = "INFO"
    PING = "PING"
    HELP = "HELP"
    ADD = "ADD"
    BULKADD = "BULKADD"
    BULKADD_LINE = ""
    BULKADD_END = BULKADD_SENTINEL
    GET = "GET"
    CLEAR = "CLEAR"
    FLUSH = "FLUSH"
    CREATE = "CREATE"
    USE = "USE"
    RAW = "RAW"


@dataclass
class Command:
    """
    An outbound text command.

    Attributes:
        type: The verb
        args: Already formatted argument string (may be empty)
    """
    type: CommandType
    args: str = ""

    @property
    def line(self) -> str:
        """The command text as sent on the wire, without the newline."""
        if self.type in (CommandType.RAW, CommandType.BULKADD_LINE):
            return self.args
        if self.args:
            return f"{self.type.value} {self.args}"
        return self.type.value

    # Builders for every verb

    @classmethod
    def info(cls) -> "Command":
        return cls(CommandType.INFO)

    @classmethod
    def ping(cls) -> "Command":
        return cls(CommandType.PING)

    @classmethod
    def help(cls) -> "Command":
        return cls(CommandType.HELP)

    @classmethod
    def add(cls, update: Update, into: Optional[str] = None) -> "Command":
        args = update.to_line()
        if into:
            args = f"{args}{INTO_PADDING} INTO {into}"
        return cls(CommandType.ADD, args)

    @classmethod
    def bulkadd_start(cls) -> "Command":
        return cls(CommandType.BULKADD)

    @classmethod
    def bulkadd_line(cls, update: Update) -> "Command":
        return cls(CommandType.BULKADD_LINE, update.to_line())

    @classmethod
    def bulkadd_end(cls) -> "Command":
        return cls(CommandType.BULKADD_END)

    @classmethod
    def get_all(cls) -> "Command":
        return cls(CommandType.GET, "ALL AS JSON")

    @classmethod
    def get(cls, count: int) -> "Command":
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ValueError(f"count must be a non-negative integer, got {count!r}")
        return cls(CommandType.GET, f"{count} AS JSON")

    @classmethod
    def clear(cls, everything: bool = False) -> "Command":
        return cls(CommandType.CLEAR, "ALL" if everything else "")

    @classmethod
    def flush(cls, everything: bool = False) -> "Command":
        return cls(CommandType.FLUSH, "ALL" if everything else "")

    @classmethod
    def create(cls, name: str) -> "Command":
        return cls(CommandType.CREATE, _db_name(name))

    @classmethod
    def use(cls, name: str) -> "Command":
        return cls(CommandType.USE, _db_name(name))


def _db_name(name: str) -> str:
    name = str(name).strip()
    if not name:
        raise ValueError("database name must not be empty")
    return name


@dataclass
class Response:
    """
    A decoded server response.

    Attributes:
        success: True when the server set the success flag
        payload: Response body text; JSON only for successful JSON verbs,
            otherwise an opaque message (errors look like ``ERR: ...``)
    """
    success: bool
    payload: str = ""

    @classmethod
    def ok(cls, payload: str = "") -> "Response":
        """Create a successful response."""
        return cls(success=True, payload=payload)

    @classmethod
    def error(cls, payload: str) -> "Response":
        """Create a failed response."""
        return cls(success=False, payload=payload)

    def json(self) -> Any:
        """Parse the payload as JSON (raises ``json.JSONDecodeError``)."""
        return json.loads(self.payload)
