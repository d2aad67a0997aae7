"""Console and metrics streaming over WebSocket."""

from gamehub.streaming.auth import authorize_stream, extract_token
from gamehub.streaming.channel import ChannelOverflowError, SessionChannel
from gamehub.streaming.gateway import StreamGateway
from gamehub.streaming.registry import SessionRegistry, StreamSession

__all__ = [
    "ChannelOverflowError",
    "SessionChannel",
    "SessionRegistry",
    "StreamGateway",
    "StreamSession",
    "authorize_stream",
    "extract_token",
]
