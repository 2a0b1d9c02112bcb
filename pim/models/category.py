import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, ForeignKey, Boolean, DateTime, Text, JSON, Index, text
from pim.db.base_class import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Category(Base):
    """Category node stored with the nested set model.

    Every node owns the interval [left, right]. Descendants of a node have
    intervals strictly inside the node's interval, a leaf has
    right == left + 1 and a node has (right - left - 1) / 2 descendants.
    """

    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False, index=True)
    slug = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Nested set
    parent_id = Column(String(36), ForeignKey("categories.id"), nullable=True)
    left = Column("lft", Integer, nullable=False)
    right = Column("rgt", Integer, nullable=False)
    level = Column(Integer, default=0, nullable=False)

    # Display settings
    sort_order = Column(Integer, default=0, nullable=False)
    is_visible = Column(Boolean, default=True, nullable=False)
    is_featured = Column(Boolean, default=False, nullable=False)
    show_in_menu = Column(Boolean, default=False, nullable=False)

    # SEO
    meta_title = Column(String(255), nullable=True)
    meta_description = Column(Text, nullable=True)
    meta_keywords = Column(Text, nullable=True)

    # Images
    image_url = Column(String(500), nullable=True)
    banner_url = Column(String(500), nullable=True)

    # Attributes inherited by products in this category
    default_attributes = Column(JSON, nullable=True)
    required_attributes = Column(JSON, nullable=True)

    # Statistics (denormalized)
    product_count = Column(Integer, default=0, nullable=False)
    total_product_count = Column(Integer, default=0, nullable=False)

    # Soft delete
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    deleted_by = Column(String(64), nullable=True)

    # Audit
    created_by = Column(String(64), nullable=True)
    updated_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_categories_lft_rgt", "lft", "rgt"),
        Index("ix_categories_parent_id", "parent_id"),
        Index("ix_categories_level", "level"),
        # Slugs only need to be unique among live rows
        Index(
            "uq_categories_slug_active",
            "slug",
            unique=True,
            sqlite_where=text("is_deleted = 0"),
            postgresql_where=text("is_deleted = false"),
        ),
    )

    def is_root(self) -> bool:
        return self.parent_id is None

    def is_leaf(self) -> bool:
        return self.right - self.left == 1

    def descendant_count(self) -> int:
        return (self.right - self.left - 1) // 2

    def is_descendant_of(self, ancestor: "Category") -> bool:
        return ancestor.left < self.left and self.right < ancestor.right

    def soft_delete(self, actor_id: Optional[str] = None) -> None:
        self.is_deleted = True
        self.deleted_at = datetime.utcnow()
        self.deleted_by = actor_id

    def restore(self) -> None:
        self.is_deleted = False
        self.deleted_at = None
        self.deleted_by = None
