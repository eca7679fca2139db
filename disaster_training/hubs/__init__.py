"""
Real-time notification hub.
"""
from disaster_training.hubs.notification_hub import NotificationHub
from disaster_training.hubs.registry import ConnectionRegistry, LiveSessionRegistry

__all__ = [
    "NotificationHub",
    "ConnectionRegistry",
    "LiveSessionRegistry",
]
