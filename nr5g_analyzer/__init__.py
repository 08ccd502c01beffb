"""Real-time spectrum state and computation engine for a wideband analyzer front end."""

__version__ = "0.1.0"
