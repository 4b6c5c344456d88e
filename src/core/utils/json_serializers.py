# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""Shared JSON serialization utilities for type-safe JSON encoding."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel


def json_serializer(obj: Any) -> Any:
    """
    Type-safe fallback serializer for ``json.dumps(default=...)``.

    Keeps numbers numeric instead of converting everything to strings:
    - datetime/date -> ISO 8601 string
    - Decimal -> float
    - Enum -> value
    - pydantic models -> JSON-compatible dict
    - Path and everything else -> string

    Args:
        obj: Object to serialize

    Returns:
        JSON-serializable representation with proper types
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, Path):
        return str(obj)
    return str(obj)


__all__ = ["json_serializer"]
