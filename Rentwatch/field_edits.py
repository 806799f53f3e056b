"""
Locator overrides of scraped attributes.

Every human edit appends a `field_edits` row; the newest row for a
(target, field) pair is the effective value. Scraper writes never create
rows, they only flag a disagreement on the standing locator edit.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, NamedTuple

if TYPE_CHECKING:
    from Rentwatch.catalog import Catalog


LOCATOR = "locator"


class EditableField(NamedTuple):
    label: str
    target_kind: Literal["unit", "building"]
    value_type: Literal["number", "text"]


EDITABLE_FIELDS: dict[str, EditableField] = {
    "rent_min": EditableField("Monthly Rent (Min)", "unit", "number"),
    "rent_max": EditableField("Monthly Rent (Max)", "unit", "number"),
    "deposit": EditableField("Security Deposit", "building", "number"),
    "admin_fee": EditableField("Application Fee", "building", "number"),
    "specials": EditableField("Current Specials", "building", "text"),
    "pet_policy": EditableField("Pet Policy", "building", "text"),
    "parking_type": EditableField("Parking", "building", "text"),
}


class FieldEditError(ValueError):
    pass


class EditTarget(NamedTuple):
    kind: Literal["unit", "building"]
    id: int

    @property
    def column(self) -> str:
        return f"{self.kind}_id"

    @classmethod
    def unit(cls, unit_id: int) -> EditTarget:
        return cls("unit", unit_id)

    @classmethod
    def building(cls, building_id: int) -> EditTarget:
        return cls("building", building_id)


@dataclass
class FieldWithEdit:
    current_value: Any
    scraped_value: Any
    last_edit: dict | None
    has_conflict: bool


def values_equal(first: Any, second: Any) -> bool:
    """JSON-level equality, independent of dict key order."""
    return json.dumps(first, sort_keys=True, default=str) == json.dumps(
        second, sort_keys=True, default=str
    )


class FieldEditOverlay:
    logger = logging.getLogger(__name__)

    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    def _check_field(self, target: EditTarget, field_name: str) -> None:
        config = EDITABLE_FIELDS.get(field_name)
        if config is None:
            raise FieldEditError(f"{field_name} is not an editable field")
        if config.target_kind != target.kind:
            raise FieldEditError(f"{field_name} belongs to a {config.target_kind}, not a {target.kind}")

    def get_effective_value(self, target: EditTarget, field_name: str, scraped_value: Any) -> FieldWithEdit:
        """
        The value to display for a field: the newest edit's value when one
        exists, regardless of what the scraper currently reports.
        """
        last_edit = self.catalog.latest_field_edit(target.column, target.id, field_name)
        if last_edit is None:
            return FieldWithEdit(
                current_value=scraped_value,
                scraped_value=scraped_value,
                last_edit=None,
                has_conflict=False,
            )

        return FieldWithEdit(
            current_value=last_edit["new_value"],
            scraped_value=scraped_value,
            last_edit=last_edit,
            has_conflict=bool(last_edit["has_conflict"]),
        )

    def record_edit(self, target: EditTarget, field_name: str, new_value: Any, editor_id: str | None) -> dict:
        self._check_field(target, field_name)

        existing = self.catalog.latest_field_edit(target.column, target.id, field_name)
        if existing is not None:
            previous_value = existing["new_value"]
        else:
            # Falls back to None when the catalog row has no such column
            previous_value = self.catalog.get_field_value(target.column, target.id, field_name)

        edit = self.catalog.create_field_edit(
            {
                target.column: target.id,
                "field_name": field_name,
                "previous_value": previous_value,
                "new_value": new_value,
                "source": LOCATOR,
                "editor_id": editor_id,
                "has_conflict": False,
                "conflict_value": None,
            }
        )
        self.logger.info(f"Recorded {field_name} edit {edit['id']} on {target.kind} {target.id}")
        return edit

    def record_scraped_value(self, target: EditTarget, field_name: str, scraped_value: Any) -> dict:
        """
        Compare a fresh scraped value against the standing locator edit.

        Only the conflict flag and value of the existing record change, and
        only when they differ from what is stored already.
        """
        edit = self.catalog.latest_field_edit(target.column, target.id, field_name, source=LOCATOR)
        if edit is None:
            return {"has_conflict": False}

        if values_equal(edit["new_value"], scraped_value):
            if edit["has_conflict"]:
                self.catalog.update_field_edit(edit["id"], {"has_conflict": False, "conflict_value": None})
                self.logger.info(f"Cleared conflict on edit {edit['id']}, scraper agrees with locator")
            return {"has_conflict": False}

        if not (edit["has_conflict"] and values_equal(edit["conflict_value"], scraped_value)):
            self.catalog.update_field_edit(edit["id"], {"has_conflict": True, "conflict_value": scraped_value})
            self.logger.warning(
                f"Conflict on {target.kind} {target.id} {field_name}: "
                f"locator={edit['new_value']!r} scraper={scraped_value!r}"
            )
        return {"has_conflict": True}

    def resolve_conflict(
        self,
        edit_id: int,
        resolution: Literal["keep_locator", "accept_scraper"],
        editor_id: str | None,
    ) -> None:
        edit = self.catalog.get_field_edit(edit_id)
        if edit is None or not edit["has_conflict"]:
            raise FieldEditError("Edit not found or no conflict to resolve")

        match resolution:
            case "keep_locator":
                self.catalog.update_field_edit(edit_id, {"has_conflict": False, "conflict_value": None})
            case "accept_scraper":
                self.catalog.create_field_edit(
                    {
                        "unit_id": edit["unit_id"],
                        "building_id": edit["building_id"],
                        "field_name": edit["field_name"],
                        "previous_value": edit["new_value"],
                        "new_value": edit["conflict_value"],
                        "source": LOCATOR,
                        "editor_id": editor_id,
                        "has_conflict": False,
                        "conflict_value": None,
                    }
                )
                self.catalog.update_field_edit(edit_id, {"has_conflict": False})
            case _:
                raise FieldEditError(f"Unknown resolution: {resolution}")

    def has_locator_edit(self, target: EditTarget, field_name: str) -> bool:
        return self.catalog.latest_field_edit(target.column, target.id, field_name, source=LOCATOR) is not None

    def locator_edited_fields(self, target: EditTarget) -> set[str]:
        """Fields a scraper must not overwrite on this target."""
        return {
            edit["field_name"]
            for edit in self.catalog.field_edits(target.column, target.id)
            if edit["source"] == LOCATOR
        }

    def history(self, target: EditTarget, field_name: str) -> list[dict]:
        return self.catalog.field_edits(target.column, target.id, field_name)

    def entity_edits(self, target: EditTarget) -> dict[str, dict]:
        """Newest edit per field."""
        latest: dict[str, dict] = {}
        for edit in self.catalog.field_edits(target.column, target.id):
            latest.setdefault(edit["field_name"], edit)
        return latest

    def unresolved_conflicts(self) -> list[dict]:
        return self.catalog.conflicted_field_edits()
