"""
Helper utilities
"""
from datetime import datetime, timedelta
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the database"""
    return datetime.utcnow()


def calculate_date_range(days: int = 30, end_date: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """Calculate date range for analysis"""
    end_date = end_date or utcnow()
    start_date = end_date - timedelta(days=days)
    return start_date, end_date


def calculate_percentage_change(current: float, previous: float) -> Optional[float]:
    """Calculate percentage change between two values"""
    if previous == 0:
        return None
    return round(((current - previous) / previous) * 100, 1)
