"""Error taxonomy for rate alerts.

None of these terminate the process. Callers degrade to skipping the
current cycle and trying again on the next one.
"""


class RateAlertsError(Exception):
    """Base class for all rate-alert errors."""


class AlertNotFoundError(RateAlertsError, KeyError):
    """Raised when an alert ID is not in the store."""

    def __init__(self, alert_id: str):
        super().__init__(alert_id)
        self.alert_id = alert_id

    def __str__(self) -> str:
        return f"Alert {self.alert_id} not found"


class PersistenceUnavailableError(RateAlertsError):
    """Raised when the alert database cannot be read or written."""


class NetworkError(RateAlertsError):
    """Raised by fetch and stream collaborators on transport failure."""


class PermissionDeniedError(RateAlertsError):
    """Raised by a notifier when the user has not allowed notifications."""


class BackgroundUnavailableError(RateAlertsError):
    """Raised when background execution is denied or restricted."""
