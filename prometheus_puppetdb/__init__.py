"""Prometheus scrape target lists generated from PuppetDB."""

__version__ = "2.0.0"
