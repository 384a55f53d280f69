"""Response envelopes: ``{success, data, ...}`` and pagination metadata."""

from __future__ import annotations

import math
from typing import Any, Dict, Optional


def ok(data: Any = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit) if limit else 0}


def paginated(data: Any, page: int, limit: int, total: int, **extra: Any) -> Dict[str, Any]:
    return ok(data, pagination=pagination(page, limit, total), **extra)


def error_body(message: str, details: Optional[Any] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "error": message}
    if details:
        body["details"] = details
    return body
