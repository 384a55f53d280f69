"""FastAPI dependencies resolving the service container off ``app.state``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from fastapi import Query, Request

from ..errors import ValidationError
from ..persistence.gateway import PersistenceGateway

if TYPE_CHECKING:
    from ..services import TelemetryServices


def get_services(request: Request) -> "TelemetryServices":
    return request.app.state.services


def get_gateway(request: Request) -> PersistenceGateway:
    return request.app.state.services.gateway


@dataclass(frozen=True)
class Page:
    page: int
    limit: int


def paging(default_limit: int) -> Callable[..., Page]:
    """``page`` >= 1 and ``1 <= limit <= PAGINATION_MAX_LIMIT``."""

    def dependency(
        request: Request,
        page: int = Query(1),
        limit: Optional[int] = Query(None),
    ) -> Page:
        max_limit = request.app.state.services.settings.pagination_max_limit
        if page < 1:
            raise ValidationError.for_field("page", "Page must be a positive integer")
        if limit is None:
            limit = min(default_limit, max_limit)
        if not 1 <= limit <= max_limit:
            raise ValidationError.for_field("limit", f"Limit must be between 1 and {max_limit}")
        return Page(page=page, limit=limit)

    return dependency
