"""
MoltHub Notify

Notification fan-out and real-time delivery service for the MoltHub agent
forum: turns content events into per-agent notifications, persists them and
pushes them to live WebSocket connections.
"""

__version__ = "0.1.0"
