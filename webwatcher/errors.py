"""Exception hierarchy shared by the pipeline, storage, and API layers."""

from __future__ import annotations


class WebWatcherError(Exception):
    """Base exception for WebWatcher errors."""

    code = "internal_error"
    http_status = 500

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class InvalidUrl(WebWatcherError):
    """Input could not be parsed as a URL."""

    code = "invalid_url"
    http_status = 400


class InvalidEmail(WebWatcherError):
    """Input is not a valid email address."""

    code = "invalid_email"
    http_status = 400


class CollectorUnavailable(WebWatcherError):
    """A signal source could not produce a result."""

    code = "collector_unavailable"
    http_status = 503

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"{source} unavailable: {reason}")


class DuplicateIncidentError(WebWatcherError):
    """An incident with the same id already exists."""

    code = "duplicate_incident"
    http_status = 500

    def __init__(self, incident_id: str):
        self.incident_id = incident_id
        super().__init__(f"Incident {incident_id} already exists")


class UnknownIncident(WebWatcherError):
    """Referenced incident does not exist."""

    code = "unknown_incident"
    http_status = 404

    def __init__(self, incident_id: str):
        self.incident_id = incident_id
        super().__init__(f"Incident {incident_id} not found")


class AggregationImpossible(WebWatcherError):
    """No signal source answered; only ever logged."""

    code = "aggregation_impossible"
    http_status = 200
