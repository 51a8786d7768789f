"""Insight generation pipeline and scheduler"""

__version__ = "1.0.0"
