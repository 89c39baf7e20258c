from .protocol import NotificationThread, Notifier, NullNotifier
from .slack import SlackNotifier

__all__ = ["NotificationThread", "Notifier", "NullNotifier", "SlackNotifier"]
