"""FastAPI dependencies for dependency injection."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from square_sync.bridge import SquareBridge
from square_sync.database import init_db
from square_sync.repositories.sql import sql_repositories


@lru_cache(maxsize=1)
def get_bridge() -> SquareBridge:
    """Process-wide bridge over the SQL repositories.

    Tests replace it through app.dependency_overrides.
    """
    _, session_factory = init_db()
    return SquareBridge(sql_repositories(session_factory))


# Type aliases for cleaner dependency injection
Bridge = Annotated[SquareBridge, Depends(get_bridge)]
