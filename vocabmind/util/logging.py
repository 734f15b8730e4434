"""
Structured logging for the search and scheduling core.
Every component logs through the shared `logger` instance below.
"""

import logging
import os
from typing import Any, Dict, List, Optional


class StructuredLogger:
    """Structured logger for search, cache, resilience and scheduling operations."""

    def __init__(self, name: str = "vocabmind", level: Optional[str] = None):
        self.logger = logging.getLogger(name)
        level_name = (level or os.getenv("VOCABMIND_LOG_LEVEL", "info")).upper()
        self.logger.setLevel(getattr(logging, level_name, logging.INFO))

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def set_level(self, level: str) -> None:
        """Change the log level at runtime (e.g. from loaded configuration)."""
        self.logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {sanitize_details(details)}"

        self.logger.log(level, message)

    def log_search(self, query: str, collection: str, source: str, result_count: int,
                   duration_ms: float, details: Dict[str, Any] = None):
        """Log a completed search request."""
        log_details = {
            "query": query[:50] + "..." if len(query) > 50 else query,
            "collection": collection,
            "source": source,
            "result_count": result_count,
            "duration_ms": round(duration_ms, 2),
        }
        if details:
            log_details.update(details)

        self.log_operation("search", "success", log_details)

    def log_search_degraded(self, collection: str, failed_path: str, reason: str):
        """Log that one retrieval path failed and the request degraded."""
        self.log_operation(
            "search.degraded",
            "fallback",
            {"collection": collection, "failed_path": failed_path, "reason": reason[:100]},
            level=logging.WARNING,
        )

    def log_vector_operation(self, operation: str, record_id: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a vector operation."""
        log_details = {"record_id": record_id}
        if details:
            log_details.update(details)

        self.log_operation(f"vector.{operation}", status, log_details, level=logging.DEBUG)

    def log_cache_event(self, event: str, hits: int, misses: int, details: Dict[str, Any] = None):
        """Log an embedding cache lookup or write outcome."""
        log_details = {"hits": hits, "misses": misses}
        if details:
            log_details.update(details)

        self.log_operation(f"cache.{event}", "success", log_details, level=logging.DEBUG)

    def log_cache_failure(self, event: str, error: Exception):
        """Log a cache backend failure that was absorbed."""
        self.log_operation(
            f"cache.{event}",
            "failed",
            {"error": str(error)[:100], "error_type": type(error).__name__},
            level=logging.WARNING,
        )

    def log_circuit_transition(self, capability: str, old_state: str, new_state: str, details: Dict[str, Any] = None):
        """Log a circuit breaker state change."""
        log_details = {"capability": capability, "from": old_state, "to": new_state}
        if details:
            log_details.update(details)

        level = logging.WARNING if new_state == "open" else logging.INFO
        self.log_operation("circuit.transition", new_state, log_details, level=level)

    def log_provider_failure(self, capability: str, error: Exception, attempt: int = None):
        """Log a failed call to an external provider."""
        log_details = {
            "capability": capability,
            "error_type": type(error).__name__,
            "error": str(error)[:100],
        }
        if attempt is not None:
            log_details["attempt"] = attempt

        self.log_operation("provider.call", "failed", log_details, level=logging.WARNING)

    def log_review(self, user_id: str, item_id: str, quality: int, interval_days: int,
                   status: str = "baseline", details: Dict[str, Any] = None):
        """Log a review update. Status is 'baseline' or 'blended'."""
        log_details = {
            "user_id": user_id,
            "item_id": item_id,
            "quality": quality,
            "interval_days": interval_days,
        }
        if details:
            log_details.update(details)

        self.log_operation("review.update", status, log_details)

    def log_data_quality(self, issue: str, item_id: str, details: Dict[str, Any] = None):
        """Log a rejected record (dimension mismatch, bad vector)."""
        log_details = {"issue": issue, "item_id": item_id}
        if details:
            log_details.update(details)

        self.log_operation("data_quality", "rejected", log_details, level=logging.WARNING)

    def log_sync_flush(self, drained: int, users: int, failed_users: List[str] = None):
        """Log a learning-interaction sync flush."""
        log_details = {"drained": drained, "users": users}
        status = "success"
        if failed_users:
            log_details["failed_users"] = failed_users[:10]
            status = "partial"

        self.log_operation("sync.flush", status, log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def sanitize_details(payload: Any, max_length: int = 100) -> Any:
    """Truncate long strings in a payload before it is logged."""
    if isinstance(payload, dict):
        return {k: sanitize_details(v, max_length) for k, v in payload.items()}
    elif isinstance(payload, str):
        return payload[:max_length] + "..." if len(payload) > max_length else payload
    elif isinstance(payload, list):
        return [sanitize_details(item, max_length) for item in payload]
    else:
        return payload
