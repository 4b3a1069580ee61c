"""Operator for MonitoringInstance custom resources."""

__version__ = "0.1.0"
