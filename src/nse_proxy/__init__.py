"""Batch proxy for the NSE quote API with browser-like session handling."""

__version__ = "0.1.0"
