"""Connectivity listeners."""

from .toggle import ToggleConnectivity

__all__ = ["ToggleConnectivity"]
