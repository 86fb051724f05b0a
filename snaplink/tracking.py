import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from user_agents import parse

from snaplink import crud, database, geo, models

logger = logging.getLogger("snaplink.tracking")

GeoLookup = Callable[[str | None], geo.GeoResult]


@dataclass(frozen=True)
class RequestMeta:
    user_agent: str | None = None
    client_ip: str | None = None
    referrer: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestMeta":
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            ip = forwarded.split(",")[0].strip()
        else:
            ip = request.client.host if request.client else None
        return cls(
            user_agent=request.headers.get("user-agent"),
            client_ip=ip or None,
            referrer=request.headers.get("referer"),
        )


@dataclass(frozen=True)
class UserAgentInfo:
    browser: str | None
    os: str | None
    device_type: str


def _family(name: str | None) -> str | None:
    # user_agents reports "Other" when it cannot tell
    if not name or name == "Other":
        return None
    return name[:50]

def classify_user_agent(raw: str | None) -> UserAgentInfo:
    if not raw:
        return UserAgentInfo(browser=None, os=None, device_type="desktop")
    ua = parse(raw)
    if ua.is_tablet:
        device_type = "tablet"
    elif ua.is_mobile:
        device_type = "mobile"
    else:
        device_type = "desktop"
    return UserAgentInfo(browser=_family(ua.browser.family), os=_family(ua.os.family), device_type=device_type)


def record_click(
    db: Session,
    link: models.ShortLink,
    meta: RequestMeta,
    geo_lookup: GeoLookup = geo.lookup_ip,
    now: datetime | None = None,
) -> models.ClickEvent:
    """Append a click event for ``link`` and bump its counter in one transaction.

    Geo lookup happens before the transaction opens and cannot fail the call.
    Store failures roll back both writes and surface as ``StoreError``.
    """
    try:
        location = geo_lookup(meta.client_ip)
    except Exception:
        logger.exception("Geo lookup raised for %s", meta.client_ip)
        location = geo.UNKNOWN
    agent = classify_user_agent(meta.user_agent)

    click = models.ClickEvent(
        link_id=link.id,
        clicked_at=now or models.utcnow(),
        user_agent=meta.user_agent,
        browser=agent.browser,
        os=agent.os,
        device_type=agent.device_type,
        ip_address=(meta.client_ip or "")[:45] or None,
        referrer=meta.referrer,
        country=location.country,
        city=location.city,
    )
    try:
        db.add(click)
        crud.increment_clicks(db, link.id, commit=False)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database.translate_error(exc) from exc
    db.refresh(click)
    return click
