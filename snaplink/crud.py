import logging
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from snaplink import codes, models, schemas
from snaplink.errors import CodeAlreadyTaken, CodeGenerationExhausted

logger = logging.getLogger("snaplink.crud")


def to_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------- links ----------
def _insert_link(db: Session, owner_id: int, code: str, url: str, link_in: schemas.LinkCreate) -> models.ShortLink:
    link = models.ShortLink(
        owner_id=owner_id,
        short_code=code,
        original_url=url,
        title=link_in.title,
        description=link_in.description,
        expires_at=to_utc(link_in.expires_at),
        click_count=0,
    )
    db.add(link)
    db.commit()
    db.refresh(link)
    return link

def create_link(db: Session, owner_id: int, link_in: schemas.LinkCreate) -> models.ShortLink:
    url = codes.validate_url(link_in.original_url)
    if link_in.custom_short_code:
        code = codes.validate_custom(link_in.custom_short_code)
        # Advisory only: the unique index on short_code settles races
        if get_link_by_code(db, code):
            raise CodeAlreadyTaken()
        try:
            return _insert_link(db, owner_id, code, url, link_in)
        except IntegrityError:
            db.rollback()
            raise CodeAlreadyTaken()

    for attempt in range(1, codes.MAX_ATTEMPTS + 1):
        code = codes.generate()
        try:
            return _insert_link(db, owner_id, code, url, link_in)
        except IntegrityError:
            db.rollback()
            logger.warning("Generated code %s collided (attempt %d/%d)", code, attempt, codes.MAX_ATTEMPTS)
    raise CodeGenerationExhausted()

def get_link_by_code(db: Session, code: str) -> models.ShortLink | None:
    return db.query(models.ShortLink).filter(models.ShortLink.short_code == code).first()

def get_owned_link(db: Session, owner_id: int | None, link_id: int) -> models.ShortLink | None:
    """Fetch a link by id; owner_id=None skips the ownership check (admin scope)."""
    query = db.query(models.ShortLink).filter(models.ShortLink.id == link_id)
    if owner_id is not None:
        query = query.filter(models.ShortLink.owner_id == owner_id)
    return query.first()

def list_links_for_owner(db: Session, owner_id: int) -> list[models.ShortLink]:
    return (
        db.query(models.ShortLink)
        .filter(models.ShortLink.owner_id == owner_id)
        .order_by(models.ShortLink.created_at.desc(), models.ShortLink.id.desc())
        .all()
    )

def delete_owned_link(db: Session, owner_id: int | None, link_id: int) -> models.ShortLink | None:
    link = get_owned_link(db, owner_id, link_id)
    if not link:
        return None
    db.delete(link)
    db.commit()
    return link

def increment_clicks(db: Session, link_id: int, commit: bool = True) -> None:
    # Single UPDATE so concurrent redirects never lose an increment
    db.query(models.ShortLink).filter(models.ShortLink.id == link_id).update(
        {models.ShortLink.click_count: models.ShortLink.click_count + 1},
        synchronize_session=False,
    )
    if commit:
        db.commit()

def list_links(db: Session, skip: int = 0, limit: int = 20) -> list[dict]:
    rows = (
        db.query(models.ShortLink, models.User.username, models.User.email)
        .join(models.User, models.ShortLink.owner_id == models.User.id)
        .order_by(models.ShortLink.created_at.desc(), models.ShortLink.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return [
        {**schemas.LinkOut.model_validate(link).model_dump(), "username": username, "email": email}
        for link, username, email in rows
    ]

def count_links(db: Session) -> int:
    return db.query(models.ShortLink).count()

def delete_links_for_owner(db: Session, owner_id: int) -> int:
    links = db.query(models.ShortLink).filter(models.ShortLink.owner_id == owner_id).all()
    for link in links:
        db.delete(link)
    db.commit()
    return len(links)

def delete_expired_links(db: Session, now: datetime | None = None) -> list[models.ShortLink]:
    now = to_utc(now) or models.utcnow()
    links = (
        db.query(models.ShortLink)
        .filter(models.ShortLink.expires_at.isnot(None), models.ShortLink.expires_at < now)
        .all()
    )
    for link in links:
        db.delete(link)
    db.commit()
    return links


# ---------- users ----------
def create_user(db: Session, username: str, email: str, password_hash: str) -> models.User:
    user = models.User(username=username, email=email, password_hash=password_hash, is_admin=False)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user

def get_user(db: Session, user_id: int) -> models.User | None:
    return db.get(models.User, user_id)

def get_user_by_email(db: Session, email: str) -> models.User | None:
    return db.query(models.User).filter(models.User.email == email).first()

def set_admin(db: Session, email: str, is_admin: bool = True) -> models.User | None:
    user = get_user_by_email(db, email)
    if not user:
        return None
    user.is_admin = is_admin
    db.commit()
    db.refresh(user)
    return user

def list_users(db: Session, skip: int = 0, limit: int = 20) -> list[dict]:
    rows = (
        db.query(
            models.User,
            func.count(models.ShortLink.id),
            func.coalesce(func.sum(models.ShortLink.click_count), 0),
        )
        .outerjoin(models.ShortLink, models.ShortLink.owner_id == models.User.id)
        .group_by(models.User.id)
        .order_by(models.User.created_at.desc(), models.User.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return [
        {
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "is_admin": user.is_admin,
            "created_at": user.created_at,
            "url_count": url_count,
            "total_clicks": total_clicks,
        }
        for user, url_count, total_clicks in rows
    ]

def count_users(db: Session) -> int:
    return db.query(models.User).count()

def is_ip_banned(db: Session, ip: str | None) -> bool:
    if not ip:
        return False
    return db.query(models.BannedIP).filter(models.BannedIP.ip_address == ip).first() is not None

def ban_ip(db: Session, ip: str, reason: str | None = None, banned_by: int | None = None) -> models.BannedIP:
    banned = db.query(models.BannedIP).filter(models.BannedIP.ip_address == ip).first()
    if banned:
        return banned
    banned = models.BannedIP(ip_address=ip, reason=reason, banned_by=banned_by)
    db.add(banned)
    db.commit()
    db.refresh(banned)
    return banned
