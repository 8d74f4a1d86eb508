"""
Ops Dashboard Core

Stateful services behind the operations dashboard:
1. CacheService - TTL/tag cache with single-flight get_or_set
2. NotificationService - bounded notification history with live fan-out
3. NotificationStream - server-sent events transport for the hub
"""

__version__ = "0.1.0"
