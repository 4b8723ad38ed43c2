"""Locate a device from WiFi access points via a wireless positioning service."""

__version__ = "0.1.0"

__all__ = ["client", "config", "output", "triangulation", "types", "wire"]