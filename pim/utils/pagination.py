from pim.schemas.category import PaginationMeta


def pagination_meta(total: int, page: int, limit: int) -> PaginationMeta:
    return PaginationMeta(
        total=total,
        page=page,
        limit=limit,
        total_pages=(total + limit - 1) // limit,
    )
