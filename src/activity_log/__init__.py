"""Unified aggregation and reconciliation of manual, automatic and pomodoro activity."""

__version__ = "0.1.0"
