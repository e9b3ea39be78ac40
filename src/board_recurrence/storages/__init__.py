from .protocol import TaskStore
from .sqlalchemy import SqlAlchemyStorage, InMemoryStorage

__all__ = ["TaskStore", "SqlAlchemyStorage", "InMemoryStorage"]
