from sqlalchemy.engine import Engine

from chatapp.db.base import Base

# model modules must be imported so their tables are registered
from chatapp import models  # noqa: F401


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)
