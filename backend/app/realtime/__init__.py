"""
Live channel for the School Portal

WebSocket sessions bound to an authenticated user. Each session joins a
per-user group and a per-role group; messages, typing signals and
announcements are pushed through the SessionGateway.

Features:
- JWT authentication for WebSocket connections
- Any number of simultaneous sessions per user
- Best-effort fan-out; dead sessions are dropped silently
- Optional Redis pub/sub backplane for multi-process deployments

Usage:
    gateway = request.app.state.gateway

    await gateway.emit_to_user(user_id, "new_message", message)
    await gateway.emit_to_role("teacher", "new_announcement", announcement)
    await gateway.broadcast_all("new_announcement", announcement)

WebSocket Client Example:
    const ws = new WebSocket('ws://localhost:8000/api/v1/ws/live?token=your_jwt_token');

    ws.onmessage = (event) => {
        const { type, data } = JSON.parse(event.data);
        console.log(type, data);
    };
    ws.send(JSON.stringify({ type: 'typing', data: { receiver_id: otherUserId } }));
"""

from .gateway import SessionGateway, get_gateway
from .registry import ConnectionRegistry, Fanout, LiveSession

__all__ = [
    "SessionGateway",
    "get_gateway",
    "ConnectionRegistry",
    "Fanout",
    "LiveSession",
]
