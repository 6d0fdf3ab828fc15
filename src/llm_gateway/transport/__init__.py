"""
Gateway Transport Layer — delivers exchange output to connected clients.

- DeliveryChannel: ordered, cancellable event delivery to one client
- WebSocketChannel / WebSocketGateway: the real-time channel
- SSEChannel: the same events as Server-Sent Events frames
"""

from llm_gateway.transport.base import DeliveryChannel
from llm_gateway.transport.event_stream import BufferedChannel, SSEChannel
from llm_gateway.transport.events import ChannelError, ChannelEvent, ChannelMessage
from llm_gateway.transport.websocket import WebSocketChannel, WebSocketGateway

__all__ = [
    "DeliveryChannel",
    "ChannelEvent",
    "ChannelMessage",
    "ChannelError",
    "SSEChannel",
    "BufferedChannel",
    "WebSocketChannel",
    "WebSocketGateway",
]
