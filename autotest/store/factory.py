"""Select the Result Store backend named by the configuration.

Usage
-----
>>> store = await create_result_store(AutotestConfig(instance="test"))

"""

from __future__ import annotations

import typing as typ

from autotest.logging import get_logger, log_info

from .database import DatabaseResultStore, init_store_schema
from .filesystem import FileResultStore

if typ.TYPE_CHECKING:
    from autotest.config import AutotestConfig

    from .protocol import ResultStore

logger = get_logger(__name__)


async def create_result_store(config: AutotestConfig) -> ResultStore:
    """Build the configured store, creating database tables when needed.

    Parameters
    ----------
    config
        Instance configuration; ``store_backend`` selects the adapter.

    Returns
    -------
    ResultStore
        A ready-to-use store bound to ``config.instance``.

    """
    if config.store_backend == "database":
        from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

        # __post_init__ guarantees the URL for the database backend.
        url = typ.cast("str", config.database_url)
        engine = create_async_engine(url)
        await init_store_schema(engine)
        log_info(logger, "Using database result store (instance=%s)", config.instance)
        return DatabaseResultStore(
            async_sessionmaker(engine, expire_on_commit=False),
            instance=config.instance,
            engine=engine,
        )

    log_info(
        logger,
        "Using file result store at %s (instance=%s)",
        config.persist_dir,
        config.instance,
    )
    return FileResultStore(config.persist_dir, instance=config.instance)
