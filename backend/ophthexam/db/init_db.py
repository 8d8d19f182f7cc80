from sqlalchemy import inspect

from ophthexam.core.config import get_settings
from ophthexam.db.base import Base
from ophthexam.db.session import engine


def init_db() -> None:
    cfg = get_settings()
    existing = set(inspect(engine).get_table_names())
    missing = [name for name in Base.metadata.tables if name not in existing]
    if not missing:
        return
    # Local demo mode: create tables so the app can boot without migrations.
    if cfg.is_local_dev and str(cfg.database_url).startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
        return
    raise RuntimeError(
        "Database schema is missing tables "
        f"({', '.join(sorted(missing))}). Run `alembic upgrade head` before starting the API."
    )


if __name__ == "__main__":
    init_db()
