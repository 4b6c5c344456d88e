"""
Core library: Reusable, infrastructure-agnostic components.

Modules:
    errors      - Exception hierarchy and failure classification
    resilience  - Exponential backoff and in-line retry for infrastructure calls
    logging     - Structured JSON logging with context propagation
    utils       - JSON serialization and worker identifiers

Design Principles:
    - No dependency on the broker client or the order domain
    - All modules are independently testable
    - Async-first where applicable
"""

from .types import BackoffPolicy, ErrorCategory, ErrorClassifier

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
    "ErrorClassifier",
    "BackoffPolicy",
]
