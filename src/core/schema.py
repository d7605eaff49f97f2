"""SQLite schema initialization from module table declarations."""

import logging

from src.core import db_client
from src.core.module import get_all_indexes, get_all_table_schemas


logger = logging.getLogger(__name__)


async def init_db(*, db_path: str | None = None) -> None:
    """Create every module table and index if missing.

    Safe to call on every startup; all statements use IF NOT EXISTS.
    """
    conn = await db_client.get_connection(db_path=db_path)

    schemas = get_all_table_schemas()
    for table_name, ddl in schemas.items():
        await conn.execute(ddl)
        logger.debug("Ensured table", extra={"table": table_name})

    indexes = get_all_indexes()
    for index in indexes:
        await conn.execute(index)

    await conn.commit()
    logger.info("Schema initialized", extra={"tables": len(schemas), "indexes": len(indexes)})
