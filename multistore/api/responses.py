"""Success envelope helpers shared by the routers."""

from typing import Any

from fastapi import Request

from multistore.api.schemas import ApiResponse, PaginatedData


def success(
    request: Request,
    data: Any,
    message: str,
    message_ar: str | None = None,
    status_code: int = 200,
) -> ApiResponse[Any]:
    """Wrap a payload in the standard envelope."""
    return ApiResponse[Any](
        success=True,
        message=message,
        message_ar=message_ar,
        data=data,
        status_code=status_code,
        request_id=getattr(request.state, "request_id", None),
    )


def page_of(items: list[Any], total: int, page: int, page_size: int) -> PaginatedData[Any]:
    return PaginatedData[Any](
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        has_more=page * page_size < total,
    )
