"""
Scan models package.
"""
from app.features.scan.models.scan import Scan, ScanStatus
from app.features.scan.models.result import Result, Severity

__all__ = ["Scan", "ScanStatus", "Result", "Severity"]
