"""Bookstore Client - Services Package

This package contains the modules that talk to the bookstore REST backend:
- HTTP gateway with bearer auth and refresh-on-401
- Session, JWT helpers and token refresher
- Notifications endpoints
"""
