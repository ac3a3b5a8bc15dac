from .store import Store, init_database

__all__ = [
    "Store",
    "init_database",
]
