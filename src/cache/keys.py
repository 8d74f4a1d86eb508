"""
Cache key builders for the dashboard's common patterns.

Keys follow the "domain:resource:qualifier" convention, e.g.
"metrics:sentry:7d".
"""

from typing import Optional


DEFAULT_PERIOD = "default"


class MetricsKeys:
    """Keys for monitoring metrics pulled from external APIs."""

    @staticmethod
    def overview() -> str:
        return "metrics:overview"

    @staticmethod
    def sentry(period: Optional[str] = None) -> str:
        return f"metrics:sentry:{period or DEFAULT_PERIOD}"

    @staticmethod
    def cicd(period: Optional[str] = None) -> str:
        return f"metrics:cicd:{period or DEFAULT_PERIOD}"

    @staticmethod
    def conflicts(period: Optional[str] = None) -> str:
        return f"metrics:conflicts:{period or DEFAULT_PERIOD}"

    @staticmethod
    def timeline(period: Optional[str] = None) -> str:
        return f"metrics:timeline:{period or DEFAULT_PERIOD}"

    @staticmethod
    def system_health() -> str:
        return "metrics:system-health"


class ReportKeys:
    """Keys for generated and scheduled reports."""

    @staticmethod
    def history(page: int, filters: str) -> str:
        return f"reports:history:{page}:{filters}"

    @staticmethod
    def scheduled() -> str:
        return "reports:scheduled"

    @staticmethod
    def report(report_id: str) -> str:
        return f"reports:{report_id}"


class UserKeys:
    @staticmethod
    def notifications(user_id: str) -> str:
        return f"user:{user_id}:notifications"

    @staticmethod
    def preferences(user_id: str) -> str:
        return f"user:{user_id}:preferences"


class CacheKeys:
    """Namespace for all key builders."""
    metrics = MetricsKeys
    reports = ReportKeys
    user = UserKeys
