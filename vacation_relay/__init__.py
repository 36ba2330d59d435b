"""Real-time chat relay for the on-call vacations dashboard."""

__version__ = "0.1.0"
