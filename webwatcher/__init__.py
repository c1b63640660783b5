"""WebWatcher: layered URL phishing-risk assessment."""

__version__ = "1.0.0"
