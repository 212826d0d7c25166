"""Protocol module for the Tectonic client."""

from .commands import BULKADD_SENTINEL, Command, CommandType, Response, Update
from .framing import (
    HEADER_SIZE,
    DecoderState,
    Frame,
    FrameDecoder,
    decode_frame,
    encode_frame,
)

__all__ = [
    "BULKADD_SENTINEL",
    "Command",
    "CommandType",
    "Response",
    "Update",
    "HEADER_SIZE",
    "DecoderState",
    "Frame",
    "FrameDecoder",
    "decode_frame",
    "encode_frame",
]
