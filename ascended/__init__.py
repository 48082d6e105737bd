"""Ascended Social API - dual authentication and route segregation layer"""

from __future__ import annotations

__version__ = "1.0.0"
