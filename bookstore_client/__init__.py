"""Bookstore Client - Core Package

This package contains the client-side core of the bookstore app:
- Authenticated HTTP gateway with single token-refresh retry (services/http_client.py)
- Session and token refresh (services/auth_service.py)
- Notifications REST collaborator (services/notifications_api.py)
- Notification read-state store (notifications.py)
- CLI interface (main.py)
"""

__version__ = "1.0.0"
