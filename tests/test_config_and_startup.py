import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine, inspect, text

from pim.core.config import Settings
from pim.core.exceptions import BadRequestError, CategoryNotFound, ConflictError, NotFoundError, SlugAlreadyExists
from pim.core.monitoring import init_monitoring
from pim.db.session import get_db
from pim.main import startup


def test_settings_normalize_environment():
    config = Settings(DATABASE_URL="sqlite://", ENVIRONMENT="  Staging ")

    assert config.ENVIRONMENT == "staging"
    assert config.is_sqlite is True


def test_settings_reject_default_page_size_above_maximum():
    with pytest.raises(ValidationError):
        Settings(DATABASE_URL="sqlite://", CATEGORY_DEFAULT_PAGE_SIZE=500, CATEGORY_MAX_PAGE_SIZE=100)


def test_settings_reject_non_positive_page_size():
    with pytest.raises(ValidationError):
        Settings(DATABASE_URL="sqlite://", CATEGORY_FEATURED_LIMIT=0)


def test_settings_reject_sqlite_in_production():
    with pytest.raises(ValidationError):
        Settings(DATABASE_URL="sqlite:///./pim.db", ENVIRONMENT="production")


def test_errors_carry_http_status():
    assert NotFoundError().status_code == 404
    assert CategoryNotFound("abc").detail == "Category with ID abc not found"
    assert ConflictError().status_code == 409
    assert SlugAlreadyExists("phones").detail == "Category with slug phones already exists"
    assert BadRequestError("nope").status_code == 400


def test_monitoring_disabled_outside_production():
    assert init_monitoring() is False


def test_startup_creates_schema(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'startup.db'}")

    startup(bind=engine)

    inspector = inspect(engine)
    assert "categories" in inspector.get_table_names()
    index_names = {index["name"] for index in inspector.get_indexes("categories")}
    assert {"ix_categories_lft_rgt", "uq_categories_slug_active"} <= index_names
    engine.dispose()


def test_get_db_yields_and_closes_session():
    generator = get_db()
    session = next(generator)

    assert session.execute(text("SELECT 1")).scalar() == 1
    with pytest.raises(StopIteration):
        next(generator)
