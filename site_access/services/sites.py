from __future__ import annotations

import logging
from dataclasses import asdict
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..exceptions import ValidationFailed
from ..store.repository import AccessRepository
from ..types import OperationContext, Site, SiteSettings
from .audit import AuditTrail

logger = logging.getLogger("site_access.sites")


class SiteService:
    def __init__(self, repo: AccessRepository, audit: AuditTrail) -> None:
        self.repo = repo
        self.audit = audit

    def create(self, name: str, tz_name: str) -> Site:
        name = (name or "").strip()
        if not name:
            raise ValidationFailed("Site name is required.")
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValidationFailed(f"Unknown timezone '{tz_name}'.") from exc
        site = self.repo.create_site(name, tz_name)
        logger.info("Created site %s (%s)", site.name, site.id)
        return site

    def get_settings(self, site_id: str) -> SiteSettings:
        return self.repo.get_site_settings(site_id)

    def update_settings(
        self,
        ctx: OperationContext,
        warn_hours: float,
        crit_hours: float,
        seguro_warn_days: int,
    ) -> SiteSettings:
        if warn_hours <= 0 or crit_hours <= 0:
            raise ValidationFailed("Alert thresholds must be positive.")
        if crit_hours < warn_hours:
            raise ValidationFailed("Critical threshold cannot be lower than the warning threshold.")
        if seguro_warn_days < 0:
            raise ValidationFailed("Insurance warning days cannot be negative.")

        before = self.repo.get_site_settings(ctx.site_id)
        saved = self.repo.save_site_settings(
            SiteSettings(
                site_id=ctx.site_id,
                warn_hours=warn_hours,
                crit_hours=crit_hours,
                seguro_warn_days=seguro_warn_days,
            )
        )
        self.audit.record(
            ctx,
            "SETTINGS_UPDATED",
            entity_type="site_settings",
            entity_id=ctx.site_id,
            before=_settings_json(before),
            after=_settings_json(saved),
        )
        return saved


def _settings_json(settings: SiteSettings) -> dict:
    payload = asdict(settings)
    payload["updated_at"] = settings.updated_at.isoformat() if settings.updated_at else None
    return payload
