import math
from typing import Any, Dict, Optional


def envelope(message: str, data: Any = None, pagination: Optional[Dict[str, int]] = None, **extra) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    if pagination is not None:
        body["pagination"] = pagination
    body.update(extra)
    return body


def paginate(total: int, page: int, limit: int) -> Dict[str, int]:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }
