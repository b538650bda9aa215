import math

from fastapi import HTTPException, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class UserSummary(BaseModel):
    id: int
    username: str
    full_name: str
    role: str

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    success: bool = True
    message: str


def database_unavailable(exc: SQLAlchemyError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def normalize_page(page: int, limit: int) -> tuple[int, int, int]:
    """Clamp paging input and return ``(page, limit, offset)``."""
    page = max(1, page)
    limit = min(max(1, limit), MAX_PAGE_SIZE)
    return page, limit, (page - 1) * limit


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


def parse_object_id(raw_id: str | int | None, label: str) -> int | None:
    """Parse a folder/item id where ``root`` or nothing means the top level."""
    if raw_id is None or raw_id == '' or raw_id == 'root':
        return None
    try:
        return int(raw_id)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f'Invalid {label} ID') from exc
