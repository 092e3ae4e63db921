"""Shared protocol definitions."""

from typing import Protocol


class RequestLogger(Protocol):
    """Protocol for request logging (Dashboard)."""

    def log_request(self, method: str, path: str, target_url: str) -> None: ...
    def log_retry(self, attempt: int, delay_ms: int, message: str) -> None: ...
    def log_response(
        self,
        method: str,
        path: str,
        status: int,
        *,
        attempts: int = 1,
    ) -> None: ...
    def log_error(self, status: int, message: str) -> None: ...
