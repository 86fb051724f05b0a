"""Click analytics read side.

Every breakdown buckets NULL values under ``"Unknown"`` and orders by count
descending, then by the id of the first click in the bucket, so equal counts
come back in first-seen order.
"""
from datetime import datetime

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from snaplink import crud, models, schemas
from snaplink.errors import NotFoundError

UNKNOWN = "Unknown"
RECENT_LIMIT = 100
TOP_LIMIT = 10

Click = models.ClickEvent


def _breakdown(db: Session, filters: list, *columns, limit: int | None = TOP_LIMIT) -> list[tuple]:
    labels = [func.coalesce(column, UNKNOWN) for column in columns]
    count = func.count(Click.id)
    query = (
        db.query(*labels, count)
        .filter(*filters)
        .group_by(*columns)
        .order_by(count.desc(), func.min(Click.id).asc())
    )
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def analytics_for(
    db: Session,
    link_id: int,
    owner_id: int | None,
    since: datetime | None = None,
) -> schemas.LinkAnalytics:
    """Breakdowns for one link. owner_id=None is the admin scope.

    Links the caller does not own are reported as missing.
    """
    link = crud.get_owned_link(db, owner_id, link_id)
    if not link:
        raise NotFoundError()

    filters = [Click.link_id == link.id]
    if since is not None:
        filters.append(Click.clicked_at >= crud.to_utc(since))

    recent = (
        db.query(Click)
        .filter(*filters)
        .order_by(Click.clicked_at.desc(), Click.id.desc())
        .limit(RECENT_LIMIT)
        .all()
    )
    return schemas.LinkAnalytics(
        short_code=link.short_code,
        total_clicks=link.click_count or 0,
        recent_clicks=[schemas.ClickOut.model_validate(c) for c in recent],
        top_locations=[
            schemas.LocationCount(country=country, city=city, count=n)
            for country, city, n in _breakdown(db, filters, Click.country, Click.city)
        ],
        top_browsers=[
            schemas.BrowserCount(browser=browser, count=n)
            for browser, n in _breakdown(db, filters, Click.browser)
        ],
        top_os=[schemas.OSCount(os=os_name, count=n) for os_name, n in _breakdown(db, filters, Click.os)],
        top_devices=[
            schemas.DeviceCount(device_type=device, count=n)
            for device, n in _breakdown(db, filters, Click.device_type, limit=None)
        ],
    )


def system_stats(db: Session, now: datetime | None = None) -> schemas.SystemStats:
    now = crud.to_utc(now) or models.utcnow()
    Link = models.ShortLink
    User = models.User

    url_count = func.count(Link.id)
    top_users = (
        db.query(User.id, User.username, User.email, url_count)
        .outerjoin(Link, Link.owner_id == User.id)
        .group_by(User.id, User.username, User.email)
        .order_by(url_count.desc(), User.id.asc())
        .limit(TOP_LIMIT)
        .all()
    )
    recent_users = db.query(User).order_by(User.created_at.desc(), User.id.desc()).limit(TOP_LIMIT).all()

    return schemas.SystemStats(
        total_users=crud.count_users(db),
        total_urls=crud.count_links(db),
        total_clicks=count_clicks(db),
        active_urls=db.query(Link).filter(or_(Link.expires_at.is_(None), Link.expires_at > now)).count(),
        expired_urls=db.query(Link).filter(Link.expires_at.isnot(None), Link.expires_at <= now).count(),
        top_users=[
            schemas.TopUser(id=uid, username=username, email=email, url_count=n)
            for uid, username, email, n in top_users
        ],
        recent_users=[schemas.RecentUser.model_validate(u) for u in recent_users],
    )


def count_clicks(db: Session) -> int:
    return db.query(Click).count()


def list_clicks(db: Session, skip: int = 0, limit: int = 50) -> list[dict]:
    rows = (
        db.query(Click, models.ShortLink, models.User)
        .join(models.ShortLink, Click.link_id == models.ShortLink.id)
        .join(models.User, models.ShortLink.owner_id == models.User.id)
        .order_by(Click.clicked_at.desc(), Click.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return [
        {
            **schemas.ClickOut.model_validate(click).model_dump(),
            "short_code": link.short_code,
            "original_url": link.original_url,
            "user_id": user.id,
            "username": user.username,
            "email": user.email,
        }
        for click, link, user in rows
    ]
