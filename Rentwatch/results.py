from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from Rentwatch.items import BuildingItem


@dataclass
class ScrapeResult:
    """Uniform return shape of a provider scrape."""

    buildings: list[BuildingItem] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    scraped_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SyncResult:
    """Summary of one provider's full sync, as reported to the log."""

    provider: str
    discovered: int = 0
    created: int = 0
    updated: int = 0
    units_created: int = 0
    units_updated: int = 0
    specials_created: int = 0
    specials_updated: int = 0
    specials_deactivated: int = 0
    errors: list[str] = field(default_factory=list)

    @classmethod
    def from_stats(cls, provider: str, stats: dict, errors: list[str]) -> SyncResult:
        return cls(
            provider=provider,
            discovered=stats.get("sync/discovered", 0),
            created=stats.get("sync/buildings_created", 0),
            updated=stats.get("sync/buildings_updated", 0),
            units_created=stats.get("sync/units_created", 0),
            units_updated=stats.get("sync/units_updated", 0),
            specials_created=stats.get("sync/specials_created", 0),
            specials_updated=stats.get("sync/specials_updated", 0),
            specials_deactivated=stats.get("sync/specials_stale", 0)
            + stats.get("sync/specials_expired", 0),
            errors=list(errors),
        )

    def merge(self, other: SyncResult) -> None:
        self.discovered += other.discovered
        self.created += other.created
        self.updated += other.updated
        self.units_created += other.units_created
        self.units_updated += other.units_updated
        self.specials_created += other.specials_created
        self.specials_updated += other.specials_updated
        self.specials_deactivated += other.specials_deactivated
        self.errors.extend(other.errors)
