import structlog
from sqlalchemy.orm import Session

from pim.db.base import Base
from pim.models.category import Category
from pim.schemas.category import CategoryCreate
from pim.services.category_service import CategoryService

logger = structlog.get_logger()

DEFAULT_CATEGORIES = [
    {
        "name": "Electronics",
        "show_in_menu": True,
        "children": [
            {"name": "Phones", "show_in_menu": True, "children": [{"name": "Smartphones"}, {"name": "Feature Phones"}]},
            {"name": "Laptops", "show_in_menu": True},
        ],
    },
    {
        "name": "Home & Garden",
        "show_in_menu": True,
        "children": [{"name": "Furniture"}, {"name": "Lighting"}],
    },
]


def init_db(engine) -> None:
    """Create all tables registered on the declarative metadata."""
    Base.metadata.create_all(bind=engine)


def seed_default_categories(db: Session, tree=None, actor_id: str = "system") -> int:
    """Create the demonstration tree; categories whose slug exists are skipped."""
    created = 0
    pending = [(node, None) for node in (tree or DEFAULT_CATEGORIES)]
    while pending:
        node, parent_id = pending.pop(0)
        fields = {key: value for key, value in node.items() if key != "children"}
        payload = CategoryCreate(parent_id=parent_id, **fields)

        existing = db.query(Category).filter(
            Category.slug == payload.slug,
            Category.is_deleted == False,
        ).first()
        if existing:
            category_id = existing.id
        else:
            category_id = CategoryService.create(db, payload, actor_id=actor_id).id
            created += 1

        pending.extend((child, category_id) for child in node.get("children", []))

    logger.info("categories_seeded", created=created)
    return created
