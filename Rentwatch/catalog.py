"""
Catalog storage used by the reconciliation pipelines.

`PostgresCatalog` is the production store. `MemoryCatalog` keeps the same
rows in process and backs dry runs and tests; it stores field edits as an
insertion-ordered, append-only list.
"""

from __future__ import annotations

import itertools
import logging
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

if TYPE_CHECKING:
    from scrapy.settings import Settings


BUILDING_COLUMNS = {
    "provider",
    "name",
    "address",
    "city",
    "state",
    "zip_code",
    "lat",
    "lng",
    "website",
    "phone",
    "primary_photo_url",
    "amenities",
    "pet_policy",
    "parking_type",
    "listing_url",
    "floorplans_url",
    "platform",
    "total_units",
    "last_synced_at",
}

UNIT_COLUMNS = {
    "building_id",
    "name",
    "bedrooms",
    "bathrooms",
    "sqft_min",
    "sqft_max",
    "rent_min",
    "rent_max",
    "available_count",
    "photo_url",
    "is_available",
    "last_synced_at",
}

SPECIAL_COLUMNS = {
    "building_id",
    "provider",
    "title",
    "description",
    "discount_type",
    "discount_value",
    "conditions",
    "start_date",
    "end_date",
    "source_url",
    "raw_html",
    "scraped_at",
    "is_active",
}

FIELD_EDIT_COLUMNS = {
    "unit_id",
    "building_id",
    "field_name",
    "previous_value",
    "new_value",
    "source",
    "editor_id",
    "has_conflict",
    "conflict_value",
}

TABLE_COLUMNS = {
    "buildings": BUILDING_COLUMNS,
    "units": UNIT_COLUMNS,
    "specials": SPECIAL_COLUMNS,
    "field_edits": FIELD_EDIT_COLUMNS,
}

JSON_COLUMNS = {"amenities", "previous_value", "new_value", "conflict_value"}

TARGET_TABLES = {"unit_id": "units", "building_id": "buildings"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_columns(table: str, values: dict) -> None:
    unknown = set(values) - TABLE_COLUMNS[table]
    if unknown:
        raise ValueError(f"Unknown {table} column(s): {', '.join(sorted(unknown))}")


class Catalog:
    """
    Storage interface consumed by the overlay, the reconciler and the pipelines.
    Rows are plain dicts keyed by column name.
    """

    # Buildings
    def listing_urls(self, provider: str) -> list[dict]:
        raise NotImplementedError

    def find_building(
        self,
        listing_url: str | None = None,
        address: str | None = None,
        provider: str | None = None,
        name: str | None = None,
    ) -> dict | None:
        raise NotImplementedError

    def buildings_without_url(self, provider: str) -> list[dict]:
        raise NotImplementedError

    def create_building(self, values: dict) -> dict:
        raise NotImplementedError

    def update_building(self, building_id: int, values: dict) -> dict:
        raise NotImplementedError

    def get_field_value(self, target_column: str, target_id: int, field_name: str) -> Any:
        raise NotImplementedError

    # Units
    def units_for_building(self, building_id: int) -> list[dict]:
        raise NotImplementedError

    def create_unit(self, values: dict) -> dict:
        raise NotImplementedError

    def update_unit(self, unit_id: int, values: dict) -> dict:
        raise NotImplementedError

    def mark_units_unavailable(self, building_id: int, keep_ids: set[int]) -> int:
        raise NotImplementedError

    # Specials
    def find_special(self, building_id: int, title: str, is_active: bool) -> dict | None:
        raise NotImplementedError

    def create_special(self, values: dict) -> dict:
        raise NotImplementedError

    def update_special(self, special_id: int, values: dict) -> dict:
        raise NotImplementedError

    def deactivate_specials_scraped_before(self, provider: str, threshold: datetime) -> int:
        raise NotImplementedError

    def deactivate_specials_ending_by(self, day: date) -> int:
        raise NotImplementedError

    def active_specials(self, building_id: int | None = None) -> list[dict]:
        raise NotImplementedError

    # Field edits
    def latest_field_edit(
        self, target_column: str, target_id: int, field_name: str, source: str | None = None
    ) -> dict | None:
        raise NotImplementedError

    def field_edits(
        self, target_column: str, target_id: int, field_name: str | None = None
    ) -> list[dict]:
        raise NotImplementedError

    def get_field_edit(self, edit_id: int) -> dict | None:
        raise NotImplementedError

    def create_field_edit(self, values: dict) -> dict:
        raise NotImplementedError

    def update_field_edit(self, edit_id: int, values: dict) -> dict:
        raise NotImplementedError

    def conflicted_field_edits(self) -> list[dict]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class PostgresCatalog(Catalog):
    logger = logging.getLogger(__name__)

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.conn = psycopg.connect(dsn, row_factory=dict_row, autocommit=True)
        self.logger.info("Successfully connected to PostgreSQL.")

    def close(self) -> None:
        if self.conn and not self.conn.closed:
            self.conn.close()

    def _fetchone(self, query: sql.Composable | str, params: dict | tuple = ()) -> dict | None:
        with self.conn.cursor() as cur:
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: sql.Composable | str, params: dict | tuple = ()) -> list[dict]:
        with self.conn.cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def _execute(self, query: sql.Composable | str, params: dict | tuple = ()) -> int:
        with self.conn.transaction():
            with self.conn.cursor() as cur:
                cur.execute(query, params)
                return cur.rowcount

    @staticmethod
    def _adapt(values: dict) -> dict:
        return {
            key: Jsonb(value) if key in JSON_COLUMNS else value
            for key, value in values.items()
        }

    def _insert(self, table: str, values: dict) -> dict:
        _check_columns(table, values)
        query = sql.SQL("INSERT INTO {table} ({columns}) VALUES ({values}) RETURNING *").format(
            table=sql.Identifier(table),
            columns=sql.SQL(", ").join(map(sql.Identifier, values)),
            values=sql.SQL(", ").join(map(sql.Placeholder, values)),
        )
        with self.conn.transaction():
            row = self._fetchone(query, self._adapt(values))
        if not row:
            raise ValueError(f"Failed to insert into {table}")
        return row

    def _update(self, table: str, row_id: int, values: dict) -> dict:
        _check_columns(table, values)
        query = sql.SQL("UPDATE {table} SET {assignments} WHERE id = %(id)s RETURNING *").format(
            table=sql.Identifier(table),
            assignments=sql.SQL(", ").join(
                sql.SQL("{} = {}").format(sql.Identifier(key), sql.Placeholder(key))
                for key in values
            ),
        )
        with self.conn.transaction():
            row = self._fetchone(query, {**self._adapt(values), "id": row_id})
        if not row:
            raise ValueError(f"Failed to update {table} row id={row_id}")
        return row

    # Buildings

    def listing_urls(self, provider: str) -> list[dict]:
        return self._fetchall(
            """
            SELECT id, name, listing_url, floorplans_url FROM buildings
            WHERE provider = %(provider)s AND listing_url IS NOT NULL
            ORDER BY id
            """,
            {"provider": provider},
        )

    def find_building(self, listing_url=None, address=None, provider=None, name=None):
        # Any of: same listing URL, same (address, provider), same (name, provider)
        return self._fetchone(
            """
            SELECT * FROM buildings
            WHERE (%(listing_url)s::text IS NOT NULL AND listing_url = %(listing_url)s)
               OR (%(address)s::text IS NOT NULL AND %(address)s <> ''
                   AND address = %(address)s AND provider = %(provider)s)
               OR (%(name)s::text IS NOT NULL AND name = %(name)s AND provider = %(provider)s)
            ORDER BY (listing_url = %(listing_url)s) DESC NULLS LAST, id
            LIMIT 1
            """,
            {"listing_url": listing_url, "address": address, "provider": provider, "name": name},
        )

    def buildings_without_url(self, provider: str) -> list[dict]:
        return self._fetchall(
            "SELECT * FROM buildings WHERE provider = %(provider)s AND listing_url IS NULL",
            {"provider": provider},
        )

    def create_building(self, values: dict) -> dict:
        return self._insert("buildings", values)

    def update_building(self, building_id: int, values: dict) -> dict:
        return self._update("buildings", building_id, values)

    def get_field_value(self, target_column: str, target_id: int, field_name: str) -> Any:
        table = TARGET_TABLES[target_column]
        if field_name not in TABLE_COLUMNS[table]:
            return None
        query = sql.SQL("SELECT {field} AS value FROM {table} WHERE id = %(id)s").format(
            field=sql.Identifier(field_name), table=sql.Identifier(table)
        )
        row = self._fetchone(query, {"id": target_id})
        return row["value"] if row else None

    # Units

    def units_for_building(self, building_id: int) -> list[dict]:
        return self._fetchall(
            "SELECT * FROM units WHERE building_id = %(building_id)s ORDER BY id",
            {"building_id": building_id},
        )

    def create_unit(self, values: dict) -> dict:
        return self._insert("units", values)

    def update_unit(self, unit_id: int, values: dict) -> dict:
        return self._update("units", unit_id, values)

    def mark_units_unavailable(self, building_id: int, keep_ids: set[int]) -> int:
        return self._execute(
            """
            UPDATE units SET is_available = FALSE
            WHERE building_id = %(building_id)s
              AND is_available
              AND NOT (id = ANY(%(keep_ids)s))
            """,
            {"building_id": building_id, "keep_ids": list(keep_ids)},
        )

    # Specials

    def find_special(self, building_id: int, title: str, is_active: bool) -> dict | None:
        return self._fetchone(
            """
            SELECT * FROM specials
            WHERE building_id = %(building_id)s AND title = %(title)s AND is_active = %(is_active)s
            ORDER BY scraped_at DESC
            LIMIT 1
            """,
            {"building_id": building_id, "title": title, "is_active": is_active},
        )

    def create_special(self, values: dict) -> dict:
        return self._insert("specials", values)

    def update_special(self, special_id: int, values: dict) -> dict:
        return self._update("specials", special_id, values)

    def deactivate_specials_scraped_before(self, provider: str, threshold: datetime) -> int:
        return self._execute(
            """
            UPDATE specials SET is_active = FALSE
            WHERE provider = %(provider)s AND is_active AND scraped_at < %(threshold)s
            """,
            {"provider": provider, "threshold": threshold},
        )

    def deactivate_specials_ending_by(self, day: date) -> int:
        return self._execute(
            "UPDATE specials SET is_active = FALSE WHERE is_active AND end_date <= %(day)s",
            {"day": day},
        )

    def active_specials(self, building_id: int | None = None) -> list[dict]:
        return self._fetchall(
            """
            SELECT s.*, b.name AS building_name, b.address AS building_address
            FROM specials s JOIN buildings b ON b.id = s.building_id
            WHERE s.is_active
              AND (%(building_id)s::integer IS NULL OR s.building_id = %(building_id)s)
            ORDER BY s.discount_value DESC NULLS LAST, s.created_at DESC
            """,
            {"building_id": building_id},
        )

    # Field edits

    def latest_field_edit(self, target_column, target_id, field_name, source=None):
        query = sql.SQL(
            """
            SELECT * FROM field_edits
            WHERE {target} = %(target_id)s
              AND field_name = %(field_name)s
              AND (%(source)s::text IS NULL OR source = %(source)s)
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """
        ).format(target=sql.Identifier(target_column))
        return self._fetchone(
            query, {"target_id": target_id, "field_name": field_name, "source": source}
        )

    def field_edits(self, target_column, target_id, field_name=None):
        query = sql.SQL(
            """
            SELECT * FROM field_edits
            WHERE {target} = %(target_id)s
              AND (%(field_name)s::text IS NULL OR field_name = %(field_name)s)
            ORDER BY created_at DESC, id DESC
            """
        ).format(target=sql.Identifier(target_column))
        return self._fetchall(query, {"target_id": target_id, "field_name": field_name})

    def get_field_edit(self, edit_id: int) -> dict | None:
        return self._fetchone("SELECT * FROM field_edits WHERE id = %(id)s", {"id": edit_id})

    def create_field_edit(self, values: dict) -> dict:
        return self._insert("field_edits", values)

    def update_field_edit(self, edit_id: int, values: dict) -> dict:
        return self._update("field_edits", edit_id, values)

    def conflicted_field_edits(self) -> list[dict]:
        return self._fetchall(
            "SELECT * FROM field_edits WHERE has_conflict ORDER BY created_at DESC, id DESC"
        )


class MemoryCatalog(Catalog):
    """In-process catalog with the same semantics as the PostgreSQL tables."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self.clock = clock
        self.tables: dict[str, dict[int, dict]] = {table: {} for table in TABLE_COLUMNS}
        self._ids = itertools.count(1)

    def _insert(self, table: str, values: dict) -> dict:
        _check_columns(table, values)
        row = {column: None for column in TABLE_COLUMNS[table]}
        row.update(values)
        row["id"] = next(self._ids)
        row["created_at"] = self.clock()
        self.tables[table][row["id"]] = row
        return dict(row)

    def _update(self, table: str, row_id: int, values: dict) -> dict:
        _check_columns(table, values)
        row = self.tables[table].get(row_id)
        if row is None:
            raise ValueError(f"Failed to update {table} row id={row_id}")
        row.update(values)
        return dict(row)

    def _rows(self, table: str) -> list[dict]:
        return list(self.tables[table].values())

    # Buildings

    def listing_urls(self, provider: str) -> list[dict]:
        return [
            {
                "id": row["id"],
                "name": row["name"],
                "listing_url": row["listing_url"],
                "floorplans_url": row["floorplans_url"],
            }
            for row in self._rows("buildings")
            if row["provider"] == provider and row["listing_url"]
        ]

    def find_building(self, listing_url=None, address=None, provider=None, name=None):
        rows = self._rows("buildings")
        if listing_url:
            for row in rows:
                if row["listing_url"] == listing_url:
                    return dict(row)
        for row in rows:
            if row["provider"] != provider:
                continue
            if address and row["address"] == address:
                return dict(row)
            if name and row["name"] == name:
                return dict(row)
        return None

    def buildings_without_url(self, provider: str) -> list[dict]:
        return [
            dict(row)
            for row in self._rows("buildings")
            if row["provider"] == provider and not row["listing_url"]
        ]

    def create_building(self, values: dict) -> dict:
        return self._insert("buildings", values)

    def update_building(self, building_id: int, values: dict) -> dict:
        return self._update("buildings", building_id, values)

    def get_field_value(self, target_column: str, target_id: int, field_name: str) -> Any:
        row = self.tables[TARGET_TABLES[target_column]].get(target_id)
        if row is None:
            return None
        return row.get(field_name)

    # Units

    def units_for_building(self, building_id: int) -> list[dict]:
        return [dict(row) for row in self._rows("units") if row["building_id"] == building_id]

    def create_unit(self, values: dict) -> dict:
        return self._insert("units", values)

    def update_unit(self, unit_id: int, values: dict) -> dict:
        return self._update("units", unit_id, values)

    def mark_units_unavailable(self, building_id: int, keep_ids: set[int]) -> int:
        count = 0
        for row in self._rows("units"):
            if row["building_id"] == building_id and row["is_available"] and row["id"] not in keep_ids:
                row["is_available"] = False
                count += 1
        return count

    # Specials

    def find_special(self, building_id: int, title: str, is_active: bool) -> dict | None:
        matches = [
            row
            for row in self._rows("specials")
            if row["building_id"] == building_id
            and row["title"] == title
            and bool(row["is_active"]) == is_active
        ]
        if not matches:
            return None
        return dict(max(matches, key=lambda row: (row["scraped_at"], row["id"])))

    def create_special(self, values: dict) -> dict:
        return self._insert("specials", values)

    def update_special(self, special_id: int, values: dict) -> dict:
        return self._update("specials", special_id, values)

    def deactivate_specials_scraped_before(self, provider: str, threshold: datetime) -> int:
        count = 0
        for row in self._rows("specials"):
            if row["provider"] == provider and row["is_active"] and row["scraped_at"] < threshold:
                row["is_active"] = False
                count += 1
        return count

    def deactivate_specials_ending_by(self, day: date) -> int:
        count = 0
        for row in self._rows("specials"):
            if row["is_active"] and row["end_date"] is not None and row["end_date"] <= day:
                row["is_active"] = False
                count += 1
        return count

    def active_specials(self, building_id: int | None = None) -> list[dict]:
        buildings = self.tables["buildings"]
        rows = [
            row
            for row in self._rows("specials")
            if row["is_active"] and (building_id is None or row["building_id"] == building_id)
        ]
        # discount_value DESC NULLS LAST, then created_at DESC
        rows.sort(key=lambda row: (row["created_at"], row["id"]), reverse=True)
        rows.sort(key=lambda row: (row["discount_value"] is not None, row["discount_value"] or 0), reverse=True)
        result = []
        for row in rows:
            building = buildings.get(row["building_id"], {})
            result.append(
                {
                    **row,
                    "building_name": building.get("name"),
                    "building_address": building.get("address"),
                }
            )
        return result

    # Field edits

    def _edits_for(self, target_column: str, target_id: int) -> list[dict]:
        edits = [row for row in self._rows("field_edits") if row[target_column] == target_id]
        return sorted(edits, key=lambda row: (row["created_at"], row["id"]), reverse=True)

    def latest_field_edit(self, target_column, target_id, field_name, source=None):
        for row in self._edits_for(target_column, target_id):
            if row["field_name"] == field_name and (source is None or row["source"] == source):
                return dict(row)
        return None

    def field_edits(self, target_column, target_id, field_name=None):
        return [
            dict(row)
            for row in self._edits_for(target_column, target_id)
            if field_name is None or row["field_name"] == field_name
        ]

    def get_field_edit(self, edit_id: int) -> dict | None:
        row = self.tables["field_edits"].get(edit_id)
        return dict(row) if row else None

    def create_field_edit(self, values: dict) -> dict:
        return self._insert("field_edits", values)

    def update_field_edit(self, edit_id: int, values: dict) -> dict:
        return self._update("field_edits", edit_id, values)

    def conflicted_field_edits(self) -> list[dict]:
        rows = [row for row in self._rows("field_edits") if row["has_conflict"]]
        rows.sort(key=lambda row: (row["created_at"], row["id"]), reverse=True)
        return [dict(row) for row in rows]


def open_catalog(settings: Settings) -> Catalog:
    """PostgreSQL when DB_DSN is configured, otherwise an in-memory catalog."""
    dsn = settings.get("DB_DSN")
    if dsn:
        return PostgresCatalog(dsn)
    logging.getLogger(__name__).warning("DB_DSN not set, using an in-memory catalog.")
    return MemoryCatalog()
