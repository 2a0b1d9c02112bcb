from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from slugify import slugify

from pim.core.config import settings


class MovePosition(str, Enum):
    FIRST = "first"
    LAST = "last"


def _normalize_slug(value: str) -> str:
    normalized = slugify(value, max_length=settings.CATEGORY_SLUG_MAX_LENGTH)
    if not normalized:
        raise ValueError("Slug cannot be empty")
    return normalized


class CategoryFields(BaseModel):
    description: Optional[str] = None
    sort_order: int = Field(default=0, ge=0)
    is_visible: bool = True
    show_in_menu: bool = False
    is_featured: bool = False
    meta_title: Optional[str] = Field(default=None, max_length=255)
    meta_description: Optional[str] = None
    meta_keywords: Optional[str] = None
    image_url: Optional[str] = Field(default=None, max_length=500)
    banner_url: Optional[str] = Field(default=None, max_length=500)
    default_attributes: Optional[Dict[str, Any]] = None
    required_attributes: Optional[List[str]] = None


class CategoryCreate(CategoryFields):
    name: str = Field(max_length=255)
    slug: Optional[str] = Field(default=None, max_length=255)
    parent_id: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Category name cannot be empty")
        return v

    @model_validator(mode="after")
    def fill_slug(self):
        self.slug = _normalize_slug(self.slug or self.name)
        return self


class CategoryUpdate(BaseModel):
    """Partial update. Tree position changes go through move."""

    name: Optional[str] = Field(default=None, max_length=255)
    slug: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    sort_order: Optional[int] = Field(default=None, ge=0)
    is_visible: Optional[bool] = None
    show_in_menu: Optional[bool] = None
    is_featured: Optional[bool] = None
    meta_title: Optional[str] = Field(default=None, max_length=255)
    meta_description: Optional[str] = None
    meta_keywords: Optional[str] = None
    image_url: Optional[str] = Field(default=None, max_length=500)
    banner_url: Optional[str] = Field(default=None, max_length=500)
    default_attributes: Optional[Dict[str, Any]] = None
    required_attributes: Optional[List[str]] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if v is not None:
            v = v.strip()
            if not v:
                raise ValueError("Category name cannot be empty")
        return v

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, v):
        if v is not None:
            return _normalize_slug(v)
        return v


class CategoryMove(BaseModel):
    new_parent_id: Optional[str] = None
    position: MovePosition = MovePosition.LAST


class CategoryQuery(BaseModel):
    search: Optional[str] = None
    parent_id: Optional[str] = None
    level: Optional[int] = Field(default=None, ge=0)
    is_visible: Optional[bool] = None
    is_featured: Optional[bool] = None
    show_in_menu: Optional[bool] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default_factory=lambda: settings.CATEGORY_DEFAULT_PAGE_SIZE, ge=1)
    sort_by: Literal["name", "left", "level", "sort_order", "created_at", "updated_at"] = "left"
    sort_order: Literal["asc", "desc"] = "asc"

    @field_validator("limit")
    @classmethod
    def validate_limit(cls, v):
        if v > settings.CATEGORY_MAX_PAGE_SIZE:
            raise ValueError(f"limit cannot exceed {settings.CATEGORY_MAX_PAGE_SIZE}")
        return v

    @property
    def filters_parent(self) -> bool:
        """True when parent_id was given, including an explicit None (roots only)."""
        return "parent_id" in self.model_fields_set


class CategoryResponse(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str]
    parent_id: Optional[str]
    left: int
    right: int
    level: int
    sort_order: int
    is_visible: bool
    show_in_menu: bool
    is_featured: bool
    meta_title: Optional[str]
    meta_description: Optional[str]
    meta_keywords: Optional[str]
    image_url: Optional[str]
    banner_url: Optional[str]
    default_attributes: Optional[Dict[str, Any]]
    required_attributes: Optional[List[str]]
    product_count: int
    total_product_count: int
    is_deleted: bool
    deleted_at: Optional[datetime]
    deleted_by: Optional[str]
    created_by: Optional[str]
    updated_by: Optional[str]
    created_at: datetime
    updated_at: datetime
    ancestors: Optional[List["CategoryResponse"]] = None

    class Config:
        from_attributes = True


class CategoryTreeNode(CategoryResponse):
    children: List["CategoryTreeNode"] = []


class CategoryCountNode(CategoryResponse):
    children: List["CategoryCountNode"] = []


class BreadcrumbItem(BaseModel):
    id: str
    name: str
    slug: str

    class Config:
        from_attributes = True


class PaginationMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class CategoryPage(BaseModel):
    items: List[CategoryResponse]
    meta: PaginationMeta


class TopCategory(BaseModel):
    id: str
    name: str
    count: int


class CategoryStats(BaseModel):
    total_categories: int
    visible_categories: int
    total_products: int
    empty_categories: int
    top_category: Optional[TopCategory] = None


CategoryResponse.model_rebuild()
CategoryTreeNode.model_rebuild()
CategoryCountNode.model_rebuild()
