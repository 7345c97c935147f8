"""Audit Service - append-only analysis log with hash-chain verification."""
from .analysis_log import AnalysisLog, AnalysisLogEntry, GENESIS_HASH
from .analysis_log_repository import AnalysisLogRepository

__all__ = ["AnalysisLog", "AnalysisLogEntry", "AnalysisLogRepository", "GENESIS_HASH"]
