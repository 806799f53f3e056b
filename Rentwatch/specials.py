"""
Reconciles scraped specials against the catalog.

Title is the only identity key inside a building: a changed description
under the same title is an update of the same offer. Records are never
deleted, only deactivated by the staleness and expiry sweeps.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from Rentwatch.catalog import Catalog
    from Rentwatch.items import BuildingItem, SpecialItem


STALE_SPECIAL_HOURS = 48


class SpecialsReconciler:
    logger = logging.getLogger(__name__)

    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    @staticmethod
    def _special_values(special: SpecialItem, source_url: str | None, now: datetime) -> dict:
        return {
            "description": special.get("description"),
            "discount_type": special.get("discount_type"),
            "discount_value": special.get("discount_value"),
            "conditions": special.get("conditions"),
            "start_date": special.get("start_date"),
            "end_date": special.get("end_date"),
            "source_url": source_url,
            "raw_html": special.get("raw_html"),
            "scraped_at": now,
        }

    def upsert(
        self,
        building_id: int,
        provider: str,
        specials: Iterable[SpecialItem],
        source_url: str | None,
        now: datetime | None = None,
    ) -> dict:
        now = now or datetime.now(timezone.utc)
        created = 0
        updated = 0

        for special in specials:
            title = special["title"]
            values = self._special_values(special, source_url, now)

            existing = self.catalog.find_special(building_id, title, is_active=True)
            if existing:
                self.catalog.update_special(existing["id"], values)
                updated += 1
                continue

            inactive = self.catalog.find_special(building_id, title, is_active=False)
            if inactive:
                self.catalog.update_special(inactive["id"], {**values, "is_active": True})
                self.logger.info(f"Reactivated special {inactive['id']} '{title}'")
                updated += 1
                continue

            self.catalog.create_special(
                {
                    **values,
                    "building_id": building_id,
                    "provider": provider,
                    "title": title,
                    "is_active": True,
                }
            )
            created += 1

        return {"created": created, "updated": updated}

    def deactivate_stale(
        self, provider: str, hours_threshold: float = STALE_SPECIAL_HOURS, now: datetime | None = None
    ) -> int:
        """Deactivate a provider's specials that were not re-scraped within the window."""
        now = now or datetime.now(timezone.utc)
        threshold = now - timedelta(hours=hours_threshold)
        count = self.catalog.deactivate_specials_scraped_before(provider, threshold)
        if count:
            self.logger.info(f"Deactivated {count} stale {provider} special(s) older than {threshold.isoformat()}")
        return count

    def deactivate_expired(self, now: datetime | None = None) -> int:
        """
        Deactivate every active special whose end date has passed, whatever its
        provider. An end date counts from its midnight, so a special is expired
        for the whole of its last day.
        """
        now = now or datetime.now(timezone.utc)
        count = self.catalog.deactivate_specials_ending_by(now.date())
        if count:
            self.logger.info(f"Deactivated {count} expired special(s)")
        return count

    def sync_from_buildings(
        self, buildings: Iterable[BuildingItem], provider: str, now: datetime | None = None
    ) -> dict:
        total_created = 0
        total_updated = 0
        errors: list[str] = []

        with_specials = [building for building in buildings if building.get("specials")]
        self.logger.debug(f"{len(with_specials)} {provider} building(s) have specials")

        for building in with_specials:
            name = building.get("name")
            row = self.catalog.find_building(
                listing_url=building.get("listing_url"),
                address=building.get("address"),
                provider=provider,
            )
            if row is None:
                message = f"Building not found in database: {name} ({building.get('address')})"
                self.logger.warning(message)
                errors.append(message)
                continue

            try:
                counts = self.upsert(
                    row["id"], provider, building["specials"], building.get("listing_url"), now=now
                )
            except Exception as e:
                message = f"Failed to sync specials for {name}: {e}"
                self.logger.error(message)
                errors.append(message)
                continue

            self.logger.info(f"{name}: {counts['created']} special(s) created, {counts['updated']} updated")
            total_created += counts["created"]
            total_updated += counts["updated"]

        return {"total_created": total_created, "total_updated": total_updated, "errors": errors}

    def active_specials_for_building(self, building_id: int) -> list[dict]:
        specials = self.catalog.active_specials(building_id)
        return sorted(specials, key=lambda row: (row["created_at"], row["id"]), reverse=True)

    def all_active_specials(self) -> list[dict]:
        """Biggest discount first, newest first among equals."""
        return self.catalog.active_specials()
