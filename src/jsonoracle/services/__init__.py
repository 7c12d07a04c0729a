"""Application services."""

from jsonoracle.services.analysis_service import AnalysisService, RateLimiter

__all__ = ["AnalysisService", "RateLimiter"]
