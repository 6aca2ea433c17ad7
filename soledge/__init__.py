"""Device state sync and power-balance control for the SOLEdge dashboard."""

__version__ = "1.0.0"
