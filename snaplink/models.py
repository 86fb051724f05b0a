from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from snaplink.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    is_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    links = relationship("ShortLink", back_populates="owner", cascade="all, delete-orphan", passive_deletes=True)


class ShortLink(Base):
    __tablename__ = "short_links"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    short_code = Column(String(20), unique=True, index=True, nullable=False)
    original_url = Column(String(2048), nullable=False)
    title = Column(String(255))
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    expires_at = Column(DateTime(timezone=True))
    click_count = Column(Integer, nullable=False, default=0)

    owner = relationship("User", back_populates="links")
    clicks = relationship("ClickEvent", back_populates="link", cascade="all, delete-orphan", passive_deletes=True)

    def is_expired(self, now: datetime | None = None) -> bool:
        expires_at = as_utc(self.expires_at)
        return expires_at is not None and expires_at < (now or utcnow())


class ClickEvent(Base):
    __tablename__ = "click_events"

    id = Column(Integer, primary_key=True, index=True)
    link_id = Column(Integer, ForeignKey("short_links.id", ondelete="CASCADE"), index=True, nullable=False)
    clicked_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    user_agent = Column(Text)
    browser = Column(String(50), index=True)
    os = Column(String(50))
    device_type = Column(String(20), index=True)
    ip_address = Column(String(45))
    referrer = Column(Text)
    country = Column(String(2))
    city = Column(String(100))

    link = relationship("ShortLink", back_populates="clicks")


class BannedIP(Base):
    __tablename__ = "banned_ips"

    id = Column(Integer, primary_key=True)
    ip_address = Column(String(45), unique=True, index=True, nullable=False)
    reason = Column(Text)
    banned_at = Column(DateTime(timezone=True), default=utcnow)
    banned_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
