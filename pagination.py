import math
from typing import Annotated, Any, List, Sequence, Tuple

from fastapi import Depends, Query
from sqlalchemy import func
from sqlmodel import Session, select

from schemas import Pagination


class PageParams:
    def __init__(
        self,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=10, ge=1, le=100),
    ):
        self.page = page
        self.limit = limit

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


PageDep = Annotated[PageParams, Depends()]


def page_info(total: int, params: PageParams) -> Pagination:
    total_pages = math.ceil(total / params.limit) if total else 0
    return Pagination(
        page=params.page,
        limit=params.limit,
        total=total,
        total_pages=total_pages,
        has_next=params.page < total_pages,
        has_prev=params.page > 1,
    )


def paginate(session: Session, query, params: PageParams) -> Tuple[List[Any], Pagination]:
    """Run query for one page and count the whole result set."""
    total = session.exec(select(func.count()).select_from(query.subquery())).one()
    items = session.exec(query.offset(params.skip).limit(params.limit)).all()
    return items, page_info(total, params)


def paginate_list(rows: Sequence[Any], params: PageParams) -> Tuple[List[Any], Pagination]:
    """Slice an already loaded result set."""
    return list(rows[params.skip:params.skip + params.limit]), page_info(len(rows), params)
