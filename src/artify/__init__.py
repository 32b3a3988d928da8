"""Artify CREATE: versioned game-concept projects, validation agents, credits."""

__version__ = "0.1.0"
