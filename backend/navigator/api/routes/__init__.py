"""API routes package."""

from navigator.api.routes import (
    auth,
    billing,
    llm,
    runs,
    threads,
)

__all__ = [
    "auth",
    "billing",
    "llm",
    "runs",
    "threads",
]
