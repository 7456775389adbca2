"""Collector transports: persistent WebSocket stream and HTTP fallback."""

from eventrelay.transports.base import RequestSender, StreamConnection, StreamConnector
from eventrelay.transports.http import HttpRequestSender
from eventrelay.transports.websocket import WebSocketConnection, WebSocketConnector

__all__ = [
    "HttpRequestSender",
    "RequestSender",
    "StreamConnection",
    "StreamConnector",
    "WebSocketConnection",
    "WebSocketConnector",
]
