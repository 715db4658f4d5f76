"""
Dialect-aware bulk upsert.

SQLite and PostgreSQL use `INSERT .. ON CONFLICT`, MySQL uses
`ON DUPLICATE KEY UPDATE` / `INSERT IGNORE`.
"""
from collections.abc import Sequence
from typing import Any

from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


async def upsert(
    db: AsyncSession,
    model: type,
    rows: Sequence[dict[str, Any]],
    index_elements: Sequence[str],
    update_columns: Sequence[str] | None = None,
) -> None:
    """
    Insert `rows` into `model`'s table.

    On a collision with the unique constraint over `index_elements`, update
    `update_columns` from the incoming row, or do nothing when
    `update_columns` is empty.
    """
    if not rows:
        return

    bind = db.get_bind()
    dialect = bind.dialect.name if bind is not None else ""

    if dialect == "postgresql":
        stmt = pg_insert(model).values(list(rows))
    elif dialect == "sqlite":
        stmt = sqlite_insert(model).values(list(rows))
    elif dialect in ("mysql", "mariadb"):
        stmt = mysql_insert(model).values(list(rows))
        if update_columns:
            stmt = stmt.on_duplicate_key_update({name: stmt.inserted[name] for name in update_columns})
        else:
            stmt = stmt.prefix_with("IGNORE")
        await db.execute(stmt)
        return
    else:
        raise ValueError(f"Upsert is not supported for dialect {dialect!r}")

    if update_columns:
        stmt = stmt.on_conflict_do_update(
            index_elements=list(index_elements),
            set_={name: stmt.excluded[name] for name in update_columns},
        )
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=list(index_elements))
    await db.execute(stmt)
