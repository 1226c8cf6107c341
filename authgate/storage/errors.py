from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class StoreUnavailable(Exception):
    """Raised when a backend cannot complete an operation.

    ``backend`` and ``operation`` are for operator logs; the original driver
    exception is chained as ``__cause__``.
    """

    def __init__(self, backend: str, operation: str):
        super().__init__(f"{backend} backend failed during {operation}")
        self.backend = backend
        self.operation = operation


__all__ = ["ConstraintViolation", "StoreUnavailable"]
