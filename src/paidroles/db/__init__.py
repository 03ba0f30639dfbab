"""Database pool, row models and repositories."""

from paidroles.db.pool import close_pool, get_pool

__all__ = ["close_pool", "get_pool"]
