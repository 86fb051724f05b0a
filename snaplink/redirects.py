import logging
from datetime import datetime

from sqlalchemy.orm import Session

from snaplink import crud, geo, models, tracking
from snaplink.errors import ExpiredError, NotFoundError

logger = logging.getLogger("snaplink.redirects")


def resolve(
    db: Session,
    code: str,
    meta: tracking.RequestMeta,
    now: datetime | None = None,
    geo_lookup: tracking.GeoLookup = geo.lookup_ip,
) -> str:
    """Return the target URL for ``code``, recording the visit.

    Raises NotFoundError for unknown codes and ExpiredError for links past
    their expiry; expired visits are not recorded. A failed click record is
    logged and the target URL is still returned.
    """
    link = crud.get_link_by_code(db, code)
    if not link:
        raise NotFoundError()

    now = now or models.utcnow()
    if link.is_expired(now):
        logger.info("Refused expired link %s (expired %s)", code, link.expires_at)
        raise ExpiredError()

    # read before recording: a failed record rolls back and expires the link
    target = link.original_url
    try:
        tracking.record_click(db, link, meta, geo_lookup=geo_lookup, now=now)
    except Exception:
        logger.exception("Failed to record click for %s", code)
    return target
