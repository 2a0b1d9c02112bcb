import pytest
from sqlalchemy.orm import Session

from pim.core.exceptions import BadRequestError, ConflictError, NotFoundError
from pim.models.category import Category
from pim.schemas.category import CategoryCreate, CategoryMove, CategoryQuery
from pim.services.category_service import CategoryService


def _create(db: Session, name: str, parent_id=None, **fields):
    return CategoryService.create(db, CategoryCreate(name=name, parent_id=parent_id, **fields))


def _snapshot(db: Session):
    return [
        (row.id, row.left, row.right, row.level, row.is_deleted)
        for row in db.query(Category).order_by(Category.left.asc()).all()
    ]


def test_remove_leaf_marks_soft_deleted(db_session: Session):
    parent = _create(db_session, "Electronics")
    leaf = _create(db_session, "Phones", parent_id=parent.id)

    deleted = CategoryService.remove(db_session, leaf.id, actor_id="admin-7")

    assert deleted.is_deleted is True
    assert deleted.deleted_by == "admin-7"
    assert deleted.deleted_at is not None
    assert (deleted.left, deleted.right) == (leaf.left, leaf.right)
    assert (CategoryService.find_one(db_session, parent.id).right) == 4


def test_soft_deleted_category_hidden_from_reads(db_session: Session):
    parent = _create(db_session, "Electronics")
    leaf = _create(db_session, "Phones", parent_id=parent.id)
    CategoryService.remove(db_session, leaf.id)

    with pytest.raises(NotFoundError):
        CategoryService.find_one(db_session, leaf.id)
    with pytest.raises(NotFoundError):
        CategoryService.find_by_slug(db_session, "phones")
    assert CategoryService.get_children(db_session, parent.id) == []
    assert CategoryService.get_descendants(db_session, parent.id) == []
    assert CategoryService.get_tree(db_session)[0].children == []
    assert CategoryService.find_all(db_session, CategoryQuery()).meta.total == 1


def test_remove_category_with_children_fails_and_leaves_table_unchanged(db_session: Session):
    parent = _create(db_session, "Electronics")
    _create(db_session, "Phones", parent_id=parent.id)
    before = _snapshot(db_session)

    with pytest.raises(BadRequestError) as exc:
        CategoryService.remove(db_session, parent.id)

    assert exc.value.status_code == 400
    assert _snapshot(db_session) == before
    assert CategoryService.check_integrity(db_session) == []


def test_remove_category_with_products_fails(db_session: Session):
    category = _create(db_session, "Phones")
    CategoryService.adjust_product_count(db_session, category.id, 3)

    with pytest.raises(BadRequestError):
        CategoryService.remove(db_session, category.id)
    assert CategoryService.find_one(db_session, category.id).is_deleted is False


def test_parent_of_soft_deleted_child_is_not_a_leaf(db_session: Session):
    parent = _create(db_session, "Electronics")
    child = _create(db_session, "Phones", parent_id=parent.id)
    CategoryService.remove(db_session, child.id)

    with pytest.raises(BadRequestError):
        CategoryService.remove(db_session, parent.id)


def test_remove_missing_category(db_session: Session):
    with pytest.raises(NotFoundError):
        CategoryService.remove(db_session, "missing")


def test_restore_brings_category_back(db_session: Session):
    parent = _create(db_session, "Electronics")
    leaf = _create(db_session, "Phones", parent_id=parent.id)
    CategoryService.remove(db_session, leaf.id, actor_id="admin")

    restored = CategoryService.restore(db_session, leaf.id, actor_id="admin")

    assert restored.is_deleted is False
    assert restored.deleted_at is None
    assert restored.deleted_by is None
    assert [child.id for child in CategoryService.get_children(db_session, parent.id)] == [leaf.id]
    assert CategoryService.check_integrity(db_session) == []


def test_restore_requires_deleted_category(db_session: Session):
    category = _create(db_session, "Phones")

    with pytest.raises(NotFoundError):
        CategoryService.restore(db_session, category.id)


def test_restore_conflicts_when_slug_taken(db_session: Session):
    old = _create(db_session, "Phones")
    CategoryService.remove(db_session, old.id)
    _create(db_session, "Phones")

    with pytest.raises(ConflictError):
        CategoryService.restore(db_session, old.id)


def test_restore_under_deleted_parent_fails(db_session: Session):
    parent = _create(db_session, "Electronics")
    child = _create(db_session, "Phones", parent_id=parent.id)
    CategoryService.remove(db_session, child.id)

    row = db_session.query(Category).filter(Category.id == parent.id).first()
    row.is_deleted = True
    db_session.commit()

    with pytest.raises(BadRequestError):
        CategoryService.restore(db_session, child.id)


def test_soft_deleted_leaf_follows_moved_parent(db_session: Session):
    electronics = _create(db_session, "Electronics")
    phones = _create(db_session, "Phones", parent_id=electronics.id)
    retired = _create(db_session, "Pagers", parent_id=phones.id)
    garden = _create(db_session, "Garden")
    CategoryService.remove(db_session, retired.id)

    CategoryService.move(db_session, phones.id, CategoryMove(new_parent_id=garden.id))
    restored = CategoryService.restore(db_session, retired.id)

    phones = CategoryService.find_one(db_session, phones.id)
    assert phones.left < restored.left and restored.right < phones.right
    assert restored.level == 2
    assert [item.name for item in CategoryService.get_breadcrumb(db_session, retired.id)] == [
        "Garden",
        "Phones",
        "Pagers",
    ]
    assert CategoryService.check_integrity(db_session) == []


def test_new_root_never_reuses_deleted_slot(db_session: Session):
    first = _create(db_session, "First")
    CategoryService.remove(db_session, first.id)

    second = _create(db_session, "Second")
    CategoryService.restore(db_session, first.id)

    assert (second.left, second.right) == (3, 4)
    assert CategoryService.check_integrity(db_session) == []
