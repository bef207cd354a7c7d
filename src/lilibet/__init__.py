"""Lilibet: voice-enabled client for the Lilibet AI tutor."""

__version__ = "0.1.0"
