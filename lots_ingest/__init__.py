"""Bankruptcy auction lot ingestion and enrichment service.

Having this file ensures the package is recognized during test discovery.
Subpackages without an ``__init__`` are resolved as namespace packages.
"""

__all__: list[str] = []
