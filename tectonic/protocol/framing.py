"""
Response Framing Module

Server responses are binary frames:

    offset 0      u8      success flag (1 = success)
    offset 1..8   u64 BE  body length
    offset 9..    bytes   body, ``length`` bytes, Latin-1 text

The server writes the length as a big-endian u64 directly after the flag,
so the low byte of the length sits at offset 8. Bodies are decoded one
byte per character; they are not guaranteed to be valid UTF-8.

A TCP stream does not preserve frame boundaries, so FrameDecoder buffers
partial reads until a whole frame is available.
"""

import struct
from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Optional

from ..config.settings import settings
from ..errors import FramingError
from .commands import Response

_HEADER = struct.Struct(">BQ")
HEADER_SIZE = _HEADER.size  # 9 bytes

SUCCESS_FLAG = 1
ENCODING = "latin-1"
EXIT_TOKEN = b"exit"


@dataclass
class Frame:
    """One complete response frame."""
    success: bool
    body: bytes

    @property
    def text(self) -> str:
        return self.body.decode(ENCODING)

    @property
    def requests_exit(self) -> bool:
        """True when the frame ends with the ``exit`` token."""
        return self.body.rstrip(b"\r\n").endswith(EXIT_TOKEN)

    def to_response(self) -> Response:
        return Response(success=self.success, payload=self.text)


def encode_frame(success: bool, payload) -> bytes:
    """
    Build a response frame.

    Args:
        success: Value of the success flag
        payload: Body as str (Latin-1 encoded) or bytes
    """
    body = payload.encode(ENCODING) if isinstance(payload, str) else bytes(payload)
    flag = SUCCESS_FLAG if success else 0
    return _HEADER.pack(flag, len(body)) + body


def _unpack_header(data) -> tuple:
    flag, length = _HEADER.unpack_from(data, 0)
    return flag == SUCCESS_FLAG, length


def decode_frame(data: bytes) -> Response:
    """
    Decode a single complete frame held in ``data``.

    Bytes after the declared body are ignored.

    Raises:
        FramingError: if the buffer is shorter than the header or the body

    Examples:
        >>> decode_frame(b"\\x01" + b"\\x00" * 7 + b"\\x02OK")
        Response(success=True, payload='OK')
    """
    if len(data) < HEADER_SIZE:
        raise FramingError(
            f"Frame header needs {HEADER_SIZE} bytes, got {len(data)}"
        )
    success, length = _unpack_header(data)
    end = HEADER_SIZE + length
    if len(data) < end:
        raise FramingError(
            f"Frame declares {length} body bytes, only {len(data) - HEADER_SIZE} present"
        )
    return Frame(success, bytes(data[HEADER_SIZE:end])).to_response()


class DecoderState(Enum):
    """Where the decoder is within the current frame."""
    AWAITING_HEADER = auto()
    AWAITING_BODY = auto()


class FrameDecoder:
    """
    Incremental decoder for a stream of response frames.

    Usage:
        decoder = FrameDecoder()
        for frame in decoder.feed(chunk):
            handle(frame)
    """

    def __init__(self, max_frame_size: Optional[int] = None):
        self.max_frame_size = (
            max_frame_size if max_frame_size is not None else settings.MAX_FRAME_SIZE
        )
        self._buffer = bytearray()
        self._state = DecoderState.AWAITING_HEADER
        self._success = False
        self._length = 0

    @property
    def state(self) -> DecoderState:
        return self._state

    @property
    def buffered(self) -> int:
        """Number of bytes held for the frame in progress."""
        return len(self._buffer)

    def feed(self, data: bytes) -> List[Frame]:
        """
        Add received bytes and return every frame they complete.

        Raises:
            FramingError: if a header declares a body above max_frame_size
        """
        self._buffer.extend(data)
        frames = []

        while True:
            if self._state is DecoderState.AWAITING_HEADER:
                if len(self._buffer) < HEADER_SIZE:
                    break
                self._success, self._length = _unpack_header(self._buffer)
                if self._length > self.max_frame_size:
                    raise FramingError(
                        f"Frame too large: {self._length} bytes "
                        f"(limit {self.max_frame_size})"
                    )
                del self._buffer[:HEADER_SIZE]
                self._state = DecoderState.AWAITING_BODY

            if len(self._buffer) < self._length:
                break

            body = bytes(self._buffer[:self._length])
            del self._buffer[:self._length]
            frames.append(Frame(self._success, body))
            self._state = DecoderState.AWAITING_HEADER

        return frames

    def reset(self) -> None:
        """Drop any partial frame."""
        self._buffer.clear()
        self._state = DecoderState.AWAITING_HEADER
        self._length = 0
