"""Read and update per-tenant website sync configuration.

Updates are partial (fields not sent keep their stored value) and the merged
result must satisfy the configuration invariant:

    enabled  =>  website_url is a non-empty absolute http(s) URL

additional_urls entries must be absolute http(s) URLs as well.  Bare domains
("example.no", "www.example.no/faq") are normalised to https:// before
validation.  Disabling sync for a tenant asks its running job (if any) to stop.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urlparse

from pydantic import BaseModel, Field
from sqlalchemy import select

from kbsync.db.models import SyncConfiguration, utcnow
from kbsync.db.session import get_session
from kbsync.errors import InvalidSyncConfiguration
from kbsync.sync.locks import request_cancel

logger = logging.getLogger(__name__)

_BARE_DOMAIN_RE = re.compile(r"^[\w-]+(\.[\w-]+)*\.[a-z]{2,}(:\d+)?(/\S*)?$", re.IGNORECASE)


class SyncConfigUpdate(BaseModel):
    """Body of a configuration update.  Omitted fields are left unchanged."""

    enabled: bool | None = None
    website_url: str | None = None
    sync_interval_hours: int | None = Field(default=None, ge=1)
    auto_approve_website_faqs: bool | None = None
    notify_on_conflicts: bool | None = None
    notify_on_new_faqs: bool | None = None
    additional_urls: list[str] | None = None


def default_sync_config(company_id: str) -> SyncConfiguration:
    """Transient (unsaved) configuration for a tenant that never configured sync."""
    return SyncConfiguration(
        company_id=company_id,
        enabled=False,
        website_url=None,
        sync_interval_hours=1,
        auto_approve_website_faqs=False,
        notify_on_conflicts=True,
        notify_on_new_faqs=True,
        additional_urls=[],
    )


def normalize_url(url: str | None) -> str | None:
    """Strip the URL and add https:// to bare domains; empty becomes None."""
    if url is None:
        return None
    url = url.strip()
    if not url:
        return None
    if "://" not in url and _BARE_DOMAIN_RE.match(url):
        return f"https://{url}"
    return url


def is_absolute_http_url(url: str | None) -> bool:
    if not url or any(ch.isspace() for ch in url):
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_sync_config(config: SyncConfiguration) -> list[str]:
    """Return the list of invariant violations (empty when valid)."""
    errors: list[str] = []
    if config.sync_interval_hours is None or config.sync_interval_hours < 1:
        errors.append("sync_interval_hours must be at least 1")
    if config.enabled and not config.website_url:
        errors.append("website_url is required when sync is enabled")
    elif config.website_url and not is_absolute_http_url(config.website_url):
        errors.append(f"website_url must be an absolute http(s) URL, got '{config.website_url}'")
    for url in config.additional_urls or []:
        if not is_absolute_http_url(url):
            errors.append(f"additional_urls entries must be absolute http(s) URLs, got '{url}'")
    return errors


async def get_sync_config(company_id: str) -> SyncConfiguration:
    """Return the stored configuration, or the disabled defaults if none exists."""
    async with get_session() as session:
        config = await session.get(SyncConfiguration, company_id)
    return config if config is not None else default_sync_config(company_id)


async def list_enabled_configs() -> list[SyncConfiguration]:
    async with get_session() as session:
        result = await session.execute(
            select(SyncConfiguration)
            .where(SyncConfiguration.enabled == True)  # noqa: E712
            .order_by(SyncConfiguration.company_id)
        )
        return list(result.scalars().all())


async def update_sync_config(company_id: str, update: SyncConfigUpdate) -> SyncConfiguration:
    """Apply a partial configuration update after validating the invariant.

    Raises:
        InvalidSyncConfiguration: If the merged configuration is invalid.
            Nothing is written in that case.
    """
    changes = update.model_dump(exclude_unset=True)
    if "website_url" in changes:
        changes["website_url"] = normalize_url(changes["website_url"])
    if "additional_urls" in changes:
        changes["additional_urls"] = [
            normalize_url(u) or "" for u in (changes["additional_urls"] or [])
        ]

    async with get_session() as session:
        config = await session.get(SyncConfiguration, company_id)
        was_enabled = bool(config is not None and config.enabled)
        if config is None:
            config = default_sync_config(company_id)
            session.add(config)

        for field_name, value in changes.items():
            if value is None and field_name not in ("website_url",):
                continue  # explicit null on a non-nullable field keeps the current value
            setattr(config, field_name, value)

        errors = validate_sync_config(config)
        if errors:
            await session.rollback()
            raise InvalidSyncConfiguration(errors)

        config.updated_at = utcnow()
        await session.commit()
        await session.refresh(config)

    logger.info(
        "Sync config updated: company=%s enabled=%s interval=%sh auto_approve=%s",
        company_id,
        config.enabled,
        config.sync_interval_hours,
        config.auto_approve_website_faqs,
    )

    if was_enabled and not config.enabled:
        await request_cancel(company_id)

    return config
