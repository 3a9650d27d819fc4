"""Urgent-alert notifiers."""

from .notifiers import LogNotifier, RichConsoleNotifier

__all__ = ["LogNotifier", "RichConsoleNotifier"]
