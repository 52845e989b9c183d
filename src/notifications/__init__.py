"""Progress notifications."""

from src.notifications.progress import NotificationChannel, ProgressNotifier

__all__ = ["NotificationChannel", "ProgressNotifier"]
