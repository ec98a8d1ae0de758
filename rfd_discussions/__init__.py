"""RFD Discussions: chat discussions kept in sync with RFD webhook events."""

__version__ = "0.1.0"
