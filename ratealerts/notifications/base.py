"""Base notifier interface."""

from abc import ABC, abstractmethod


class BaseNotifier(ABC):
    """Abstract base class for notification delivery.

    Implementations show user-visible notifications and maintain the
    badge count of triggered alerts.
    """

    @abstractmethod
    def show(self, title: str, body: str) -> None:
        """Show a notification.

        Args:
            title: Notification title.
            body: Notification body text.

        Raises:
            PermissionDeniedError: If the user has not allowed notifications.
        """
        pass

    @abstractmethod
    def set_badge(self, count: int) -> None:
        """Set the badge count.

        Args:
            count: Number of currently triggered alerts.
        """
        pass
