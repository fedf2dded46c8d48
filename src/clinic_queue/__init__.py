"""Clinic queue service: live patient queue state machine and its event infrastructure."""

__version__ = "0.1.0"
