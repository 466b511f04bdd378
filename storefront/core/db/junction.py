"""Many-to-many junction rows between catalog entities."""
from typing import Any, Dict, Tuple

from storefront.core.db.query import execute
from storefront.core.errors import UnsafeIdentifierError

# table -> allowed foreign key columns; identifiers are only ever taken from here
JUNCTION_TABLES: Dict[str, Tuple[str, ...]] = {
    "product_tags": ("product_id", "tag_id"),
    "product_suppliers": ("product_id", "supplier_id"),
    "category_specifications": ("category_id", "specification_id"),
}


def _check_identifiers(table: str, column_1: str, column_2: str) -> None:
    columns = JUNCTION_TABLES.get(table)
    if columns is None:
        raise UnsafeIdentifierError(f"table {table!r} is not a known junction table", "map_entity_to_entity")
    for column in (column_1, column_2):
        if column not in columns:
            raise UnsafeIdentifierError(f"column {column!r} is not allowed on {table}", "map_entity_to_entity")
    if column_1 == column_2:
        raise UnsafeIdentifierError("junction columns must differ", "map_entity_to_entity")


async def map_entity_to_entity(
        conn: Any,
        entity_id_1: int,
        entity_id_2: int,
        table: str,
        column_1: str,
        column_2: str,
) -> bool:
    """
    Link two entities through a junction table unless the link already exists.

    Runs on the caller's connection so it composes into a larger unit of work.
    Relies on the junction table's unique key, so concurrent callers linking
    the same pair insert one row between them. Returns True when a row was inserted.
    """
    _check_identifiers(table, column_1, column_2)
    result = await execute(
        conn,
        f"INSERT IGNORE INTO {table} ({column_1}, {column_2}) VALUES (%s, %s)",
        (entity_id_1, entity_id_2),
    )
    return result.rowcount == 1


__all__ = ["JUNCTION_TABLES", "map_entity_to_entity"]
