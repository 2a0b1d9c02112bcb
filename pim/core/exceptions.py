from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Category not found"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail
        )


class ConflictError(HTTPException):
    def __init__(self, detail: str = "Category already exists"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail
        )


class BadRequestError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )


class CategoryNotFound(NotFoundError):
    def __init__(self, category_id: str):
        super().__init__(detail=f"Category with ID {category_id} not found")


class SlugAlreadyExists(ConflictError):
    def __init__(self, slug: str):
        super().__init__(detail=f"Category with slug {slug} already exists")
