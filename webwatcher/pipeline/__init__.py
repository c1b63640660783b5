"""Scan pipeline modules for WebWatcher."""

from .incidents import IncidentGenerator, new_incident_id
from .scan import ScanOutcome, ScanPipeline
from .sink import EventSink

__all__ = ["EventSink", "IncidentGenerator", "ScanOutcome", "ScanPipeline", "new_incident_id"]
