"""Notification delivery package.

Persists one ``NotificationRecord`` per logical notification, fans push
notifications out to a user's active devices through a ``PushClient`` and
reconciles asynchronous delivery receipts from the provider.
"""
