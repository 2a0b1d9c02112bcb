from typing import List, Optional

import structlog
from fastapi import HTTPException
from sqlalchemy import func, or_, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pim.core.config import settings
from pim.core.exceptions import BadRequestError, CategoryNotFound, NotFoundError, SlugAlreadyExists
from pim.models.category import Category
from pim.schemas.category import (
    BreadcrumbItem,
    CategoryCountNode,
    CategoryCreate,
    CategoryMove,
    CategoryPage,
    CategoryQuery,
    CategoryResponse,
    CategoryStats,
    CategoryTreeNode,
    CategoryUpdate,
    MovePosition,
    TopCategory,
)
from pim.utils.nested_set import accumulate_totals, build_forest, interval_violations, renumber
from pim.utils.pagination import pagination_meta

logger = structlog.get_logger()

SORT_COLUMNS = {
    "name": Category.name,
    "left": Category.left,
    "level": Category.level,
    "sort_order": Category.sort_order,
    "created_at": Category.created_at,
    "updated_at": Category.updated_at,
}

# Fields an update may explicitly clear
NULLABLE_FIELDS = {
    "description",
    "meta_title",
    "meta_description",
    "meta_keywords",
    "image_url",
    "banner_url",
    "default_attributes",
    "required_attributes",
}


def _to_response(category: Category) -> CategoryResponse:
    return CategoryResponse.model_validate(category)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class CategoryService:
    """Category hierarchy stored as a nested set.

    Mutations run in a single transaction each and shift ``left``/``right``
    with ranged bulk updates. Soft-deleted rows are shifted like any other
    row, so they keep their place in the tree until restored.
    """

    # ============= INTERNALS =============

    @staticmethod
    def _lock_tree(db: Session) -> None:
        """Serialize tree mutators for the rest of the transaction."""
        if db.get_bind().dialect.name == "postgresql":
            db.execute(text("LOCK TABLE categories IN SHARE ROW EXCLUSIVE MODE"))

    @staticmethod
    def _get_active(db: Session, category_id: str, lock: bool = False) -> Category:
        query = db.query(Category).filter(Category.id == category_id, Category.is_deleted == False)
        if lock:
            query = query.with_for_update()
        category = query.first()
        if not category:
            raise CategoryNotFound(category_id)
        return category

    @staticmethod
    def _ensure_slug_available(db: Session, slug: str, exclude_id: Optional[str] = None) -> None:
        query = db.query(Category.id).filter(Category.slug == slug, Category.is_deleted == False)
        if exclude_id is not None:
            query = query.filter(Category.id != exclude_id)
        if query.first() is not None:
            raise SlugAlreadyExists(slug)

    @staticmethod
    def _max_right(db: Session) -> int:
        # Soft-deleted rows count too so their slots are never reused
        return db.query(func.max(Category.right)).scalar() or 0

    @staticmethod
    def _shift(db: Session, column, threshold: int, delta: int) -> None:
        """Add delta to column on every row where column >= threshold."""
        db.query(Category).filter(column >= threshold).update(
            {column: column + delta},
            synchronize_session=False,
        )

    @staticmethod
    def _relocate(db: Session, old_left: int, old_right: int, distance: int, level_diff: int) -> None:
        db.query(Category).filter(
            Category.left >= old_left,
            Category.right <= old_right,
        ).update(
            {
                Category.left: Category.left + distance,
                Category.right: Category.right + distance,
                Category.level: Category.level + level_diff,
            },
            synchronize_session=False,
        )

    @staticmethod
    def _add_to_totals(db: Session, delta: int, *criteria) -> None:
        db.query(Category).filter(*criteria).update(
            {Category.total_product_count: Category.total_product_count + delta},
            synchronize_session=False,
        )

    @staticmethod
    def _ancestor_rows(db: Session, category: Category, include_self: bool = False) -> List[Category]:
        rows = db.query(Category).filter(
            Category.left <= category.left,
            Category.right >= category.right,
            Category.is_deleted == False,
        ).order_by(Category.left.asc()).all()
        return [row for row in rows if include_self or row.id != category.id]

    @staticmethod
    def _active_rows(db: Session, *criteria) -> List[Category]:
        return db.query(Category).filter(
            Category.is_deleted == False, *criteria
        ).order_by(Category.left.asc()).all()

    # ============= MUTATIONS =============

    @staticmethod
    def create(db: Session, data: CategoryCreate, actor_id: Optional[str] = None) -> CategoryResponse:
        """Insert a category as the last child of its parent, or as the last root."""
        try:
            CategoryService._lock_tree(db)
            CategoryService._ensure_slug_available(db, data.slug)

            parent = None
            if data.parent_id:
                parent = (
                    db.query(Category)
                    .filter(Category.id == data.parent_id, Category.is_deleted == False)
                    .with_for_update()
                    .first()
                )
                if not parent:
                    raise NotFoundError(f"Parent category {data.parent_id} not found")

                level = parent.level + 1
                new_left = parent.right
                CategoryService._shift(db, Category.right, new_left, 2)
                CategoryService._shift(db, Category.left, new_left, 2)
            else:
                level = 0
                new_left = CategoryService._max_right(db) + 1

            category = Category(
                **data.model_dump(exclude={"parent_id"}),
                parent_id=parent.id if parent else None,
                left=new_left,
                right=new_left + 1,
                level=level,
                created_by=actor_id,
                updated_by=actor_id,
            )
            db.add(category)
            db.commit()
            db.refresh(category)
        except HTTPException:
            db.rollback()
            raise
        except IntegrityError:
            db.rollback()
            raise SlugAlreadyExists(data.slug)
        except Exception:
            db.rollback()
            logger.exception("category_create_failed", slug=data.slug, parent_id=data.parent_id)
            raise

        logger.info(
            "category_created",
            category_id=category.id,
            slug=category.slug,
            left=category.left,
            right=category.right,
            level=category.level,
        )
        return _to_response(category)

    @staticmethod
    def update(
        db: Session,
        category_id: str,
        data: CategoryUpdate,
        actor_id: Optional[str] = None,
    ) -> CategoryResponse:
        """Patch display fields and slug. Never touches the tree position."""
        try:
            category = CategoryService._get_active(db, category_id, lock=True)

            update_data = {
                key: value
                for key, value in data.model_dump(exclude_unset=True).items()
                if value is not None or key in NULLABLE_FIELDS
            }
            if "slug" in update_data and update_data["slug"] != category.slug:
                CategoryService._ensure_slug_available(db, update_data["slug"], exclude_id=category.id)

            for key, value in update_data.items():
                setattr(category, key, value)
            category.updated_by = actor_id
            slug = category.slug

            db.commit()
            db.refresh(category)
        except HTTPException:
            db.rollback()
            raise
        except IntegrityError:
            db.rollback()
            raise SlugAlreadyExists(slug)
        except Exception:
            db.rollback()
            logger.exception("category_update_failed", category_id=category_id)
            raise

        logger.info("category_updated", category_id=category_id, fields=sorted(update_data))
        return _to_response(category)

    @staticmethod
    def move(
        db: Session,
        category_id: str,
        data: CategoryMove,
        actor_id: Optional[str] = None,
    ) -> CategoryResponse:
        """Re-parent a category together with its whole subtree.

        The destination gap is opened first, the subtree is relocated with a
        single ranged update, then the source gap is closed.
        """
        try:
            CategoryService._lock_tree(db)
            category = CategoryService._get_active(db, category_id, lock=True)

            if data.new_parent_id == category.id:
                raise BadRequestError("Cannot move category to itself")

            new_parent = None
            new_level = 0
            if data.new_parent_id:
                new_parent = (
                    db.query(Category)
                    .filter(Category.id == data.new_parent_id, Category.is_deleted == False)
                    .with_for_update()
                    .first()
                )
                if not new_parent:
                    raise NotFoundError(f"New parent category {data.new_parent_id} not found")
                if new_parent.is_descendant_of(category):
                    raise BadRequestError("Cannot move category to its own descendant")

                new_level = new_parent.level + 1
                if data.position == MovePosition.FIRST:
                    new_left = new_parent.left + 1
                else:
                    new_left = new_parent.right
            elif data.position == MovePosition.FIRST:
                new_left = 1
            else:
                new_left = CategoryService._max_right(db) + 1

            old_left, old_right = category.left, category.right
            tree_size = old_right - old_left + 1
            level_diff = new_level - category.level

            # Carry the subtree's products from the old ancestor chain to the new one
            subtree_total = category.total_product_count
            if subtree_total:
                CategoryService._add_to_totals(
                    db, -subtree_total, Category.left < old_left, Category.right > old_right
                )
                if new_parent is not None:
                    CategoryService._add_to_totals(
                        db, subtree_total, Category.left <= new_parent.left, Category.right >= new_parent.right
                    )

            # Opening the gap at or before the subtree pushes the subtree itself
            if new_left <= old_left:
                old_left += tree_size
                old_right += tree_size
            distance = new_left - old_left

            CategoryService._shift(db, Category.left, new_left, tree_size)
            CategoryService._shift(db, Category.right, new_left, tree_size)
            CategoryService._relocate(db, old_left, old_right, distance, level_diff)
            CategoryService._shift(db, Category.left, old_right + 1, -tree_size)
            CategoryService._shift(db, Category.right, old_right + 1, -tree_size)

            category.parent_id = new_parent.id if new_parent else None
            category.level = new_level
            category.updated_by = actor_id

            db.commit()
            db.refresh(category)
        except HTTPException:
            db.rollback()
            raise
        except Exception:
            db.rollback()
            logger.exception("category_move_failed", category_id=category_id, new_parent_id=data.new_parent_id)
            raise

        logger.info(
            "category_moved",
            category_id=category_id,
            new_parent_id=data.new_parent_id,
            position=data.position.value,
            left=category.left,
            right=category.right,
            descendants=category.descendant_count(),
        )
        return _to_response(category)

    @staticmethod
    def remove(db: Session, category_id: str, actor_id: Optional[str] = None) -> CategoryResponse:
        """Soft delete a leaf category without products. Intervals are kept."""
        try:
            category = CategoryService._get_active(db, category_id, lock=True)

            if not category.is_leaf():
                raise BadRequestError("Cannot delete category with subcategories")
            if category.product_count > 0:
                raise BadRequestError("Cannot delete category with products")

            category.soft_delete(actor_id)
            category.updated_by = actor_id
            db.commit()
            db.refresh(category)
        except HTTPException:
            db.rollback()
            raise
        except Exception:
            db.rollback()
            logger.exception("category_delete_failed", category_id=category_id)
            raise

        logger.info("category_soft_deleted", category_id=category_id, deleted_by=actor_id)
        return _to_response(category)

    @staticmethod
    def restore(db: Session, category_id: str, actor_id: Optional[str] = None) -> CategoryResponse:
        """Bring a soft-deleted category back at its retained position."""
        try:
            category = (
                db.query(Category)
                .filter(Category.id == category_id, Category.is_deleted == True)
                .with_for_update()
                .first()
            )
            if not category:
                raise NotFoundError(f"Deleted category with ID {category_id} not found")

            if not category.is_root():
                parent = db.query(Category).filter(Category.id == category.parent_id).first()
                if parent is None or parent.is_deleted:
                    raise BadRequestError("Cannot restore category whose parent is missing or deleted")

            CategoryService._ensure_slug_available(db, category.slug, exclude_id=category.id)

            category.restore()
            category.updated_by = actor_id
            db.commit()
            db.refresh(category)
        except HTTPException:
            db.rollback()
            raise
        except Exception:
            db.rollback()
            logger.exception("category_restore_failed", category_id=category_id)
            raise

        logger.info("category_restored", category_id=category_id, restored_by=actor_id)
        return _to_response(category)

    @staticmethod
    def adjust_product_count(db: Session, category_id: str, delta: int) -> CategoryResponse:
        """Apply a product assignment delta to the denormalized counters.

        ``product_count`` changes on the category itself, ``total_product_count``
        on the category and every row whose interval contains it.
        """
        try:
            category = CategoryService._get_active(db, category_id, lock=True)
            new_count = category.product_count + delta
            if new_count < 0:
                raise BadRequestError("Product count cannot become negative")
            category.product_count = new_count
            CategoryService._add_to_totals(
                db, delta, Category.left <= category.left, Category.right >= category.right
            )
            db.commit()
            db.refresh(category)
        except HTTPException:
            db.rollback()
            raise
        except Exception:
            db.rollback()
            logger.exception("category_product_count_failed", category_id=category_id, delta=delta)
            raise

        return _to_response(category)

    @staticmethod
    def rebuild(db: Session) -> int:
        """Renumber the whole table from parent_id links, closing numbering gaps.

        Returns the number of rows whose position changed.
        """
        try:
            CategoryService._lock_tree(db)
            rows = db.query(Category).order_by(Category.left.asc()).with_for_update().all()
            positions = renumber(rows)
            by_id = {row.id: row for row in rows}

            changed = 0
            for row in rows:
                position = positions[row.id]
                current = (row.left, row.right, row.level, row.parent_id)
                if current == (position.left, position.right, position.level, position.parent_id):
                    continue
                row.left = position.left
                row.right = position.right
                row.level = position.level
                row.parent_id = position.parent_id
                changed += 1

            # Re-parented orphans move their products to a new ancestor chain
            for row_id, total in accumulate_totals(rows).items():
                row = by_id[row_id]
                if row.total_product_count != total:
                    row.total_product_count = total
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("category_tree_rebuild_failed")
            raise

        logger.info("category_tree_rebuilt", rows=len(rows), changed=changed)
        return changed

    # ============= READS =============

    @staticmethod
    def find_one(db: Session, category_id: str, include_ancestors: bool = False) -> CategoryResponse:
        category = CategoryService._get_active(db, category_id)
        response = _to_response(category)
        if include_ancestors:
            response.ancestors = [_to_response(row) for row in CategoryService._ancestor_rows(db, category)]
        return response

    @staticmethod
    def find_by_slug(db: Session, slug: str) -> CategoryResponse:
        category = db.query(Category).filter(Category.slug == slug, Category.is_deleted == False).first()
        if not category:
            raise NotFoundError(f"Category with slug {slug} not found")
        return _to_response(category)

    @staticmethod
    def find_all(db: Session, params: CategoryQuery) -> CategoryPage:
        """Filtered, sorted and paginated listing of live categories."""
        query = db.query(Category).filter(Category.is_deleted == False)

        if params.search:
            pattern = f"%{_escape_like(params.search)}%"
            query = query.filter(
                or_(
                    Category.name.ilike(pattern, escape="\\"),
                    Category.description.ilike(pattern, escape="\\"),
                )
            )
        if params.filters_parent:
            if params.parent_id is None:
                query = query.filter(Category.parent_id.is_(None))
            else:
                query = query.filter(Category.parent_id == params.parent_id)
        if params.level is not None:
            query = query.filter(Category.level == params.level)
        if params.is_visible is not None:
            query = query.filter(Category.is_visible == params.is_visible)
        if params.is_featured is not None:
            query = query.filter(Category.is_featured == params.is_featured)
        if params.show_in_menu is not None:
            query = query.filter(Category.show_in_menu == params.show_in_menu)

        total = query.count()

        column = SORT_COLUMNS[params.sort_by]
        ordering = column.desc() if params.sort_order == "desc" else column.asc()
        items = (
            query.order_by(ordering, Category.left.asc())
            .offset((params.page - 1) * params.limit)
            .limit(params.limit)
            .all()
        )

        return CategoryPage(
            items=[_to_response(item) for item in items],
            meta=pagination_meta(total, params.page, params.limit),
        )

    @staticmethod
    def get_roots(db: Session) -> CategoryPage:
        return CategoryService.find_all(
            db, CategoryQuery(parent_id=None, page=1, limit=settings.CATEGORY_MAX_PAGE_SIZE)
        )

    @staticmethod
    def get_featured(db: Session, limit: Optional[int] = None) -> CategoryPage:
        return CategoryService.find_all(
            db,
            CategoryQuery(
                is_featured=True,
                is_visible=True,
                page=1,
                limit=limit or settings.CATEGORY_FEATURED_LIMIT,
            ),
        )

    @staticmethod
    def get_tree(db: Session) -> List[CategoryTreeNode]:
        rows = CategoryService._active_rows(db)
        return build_forest([CategoryTreeNode(**_to_response(row).model_dump()) for row in rows])

    @staticmethod
    def get_menu_tree(db: Session) -> List[CategoryTreeNode]:
        """Visible menu categories; a node under a hidden parent is left out."""
        rows = CategoryService._active_rows(db, Category.is_visible == True, Category.show_in_menu == True)
        return build_forest([CategoryTreeNode(**_to_response(row).model_dump()) for row in rows])

    @staticmethod
    def get_tree_with_counts(db: Session) -> List[CategoryCountNode]:
        rows = CategoryService._active_rows(db)
        totals = accumulate_totals(rows)
        nodes = []
        for row in rows:
            values = _to_response(row).model_dump()
            values["total_product_count"] = totals[row.id]
            nodes.append(CategoryCountNode(**values))
        return build_forest(nodes)

    @staticmethod
    def get_with_counts(db: Session, category_id: str) -> CategoryCountNode:
        """A category with its subtree product total and its direct children."""
        category = CategoryService._get_active(db, category_id)
        total = db.query(func.coalesce(func.sum(Category.product_count), 0)).filter(
            Category.left >= category.left,
            Category.right <= category.right,
            Category.is_deleted == False,
        ).scalar()

        children = db.query(Category).filter(
            Category.parent_id == category.id,
            Category.is_deleted == False,
        ).order_by(Category.sort_order.asc(), Category.name.asc()).all()

        values = _to_response(category).model_dump()
        values["total_product_count"] = total
        values["children"] = [CategoryCountNode(**_to_response(child).model_dump()) for child in children]
        return CategoryCountNode(**values)

    @staticmethod
    def get_ancestors(db: Session, category_id: str) -> List[CategoryResponse]:
        category = CategoryService._get_active(db, category_id)
        return [_to_response(row) for row in CategoryService._ancestor_rows(db, category)]

    @staticmethod
    def get_descendants(db: Session, category_id: str) -> List[CategoryResponse]:
        category = CategoryService._get_active(db, category_id)
        rows = CategoryService._active_rows(
            db,
            Category.left >= category.left,
            Category.right <= category.right,
            Category.id != category.id,
        )
        return [_to_response(row) for row in rows]

    @staticmethod
    def get_children(db: Session, category_id: str) -> List[CategoryResponse]:
        CategoryService._get_active(db, category_id)
        children = db.query(Category).filter(
            Category.parent_id == category_id,
            Category.is_deleted == False,
        ).order_by(Category.sort_order.asc(), Category.name.asc()).all()
        return [_to_response(child) for child in children]

    @staticmethod
    def get_breadcrumb(db: Session, category_id: str) -> List[BreadcrumbItem]:
        category = CategoryService._get_active(db, category_id)
        rows = CategoryService._ancestor_rows(db, category, include_self=True)
        return [BreadcrumbItem.model_validate(row) for row in rows]

    @staticmethod
    def get_stats(db: Session) -> CategoryStats:
        live = db.query(Category).filter(Category.is_deleted == False)

        total_products = db.query(func.coalesce(func.sum(Category.product_count), 0)).filter(
            Category.is_deleted == False
        ).scalar()
        top = (
            live.filter(Category.product_count > 0)
            .order_by(Category.product_count.desc(), Category.left.asc())
            .first()
        )

        return CategoryStats(
            total_categories=live.count(),
            visible_categories=live.filter(Category.is_visible == True).count(),
            total_products=total_products,
            empty_categories=live.filter(Category.product_count == 0).count(),
            top_category=TopCategory(id=top.id, name=top.name, count=top.product_count) if top else None,
        )

    @staticmethod
    def check_integrity(db: Session) -> List[str]:
        """Violations of the nested-set invariant among live rows (empty when healthy)."""
        return interval_violations(CategoryService._active_rows(db))
