from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, StrictBool
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---------- auth ----------
class SignupIn(CamelModel):
    username: str = Field(min_length=1, max_length=50)
    email: str = Field(min_length=3, max_length=100)
    password: str = Field(min_length=1)

class LoginIn(CamelModel):
    email: str
    password: str

class UserOut(CamelModel):
    id: int
    username: str
    email: str
    is_admin: bool = False

class AuthOut(CamelModel):
    user: UserOut
    token: str


# ---------- links ----------
class LinkCreate(CamelModel):
    original_url: str
    custom_short_code: str | None = None
    title: str | None = Field(default=None, max_length=255)
    description: str | None = None
    expires_at: datetime | None = None

class LinkCreated(CamelModel):
    id: int
    short_code: str
    short_url: str
    original_url: str
    created_at: datetime

class LinkOut(CamelModel):
    id: int
    short_code: str
    original_url: str
    title: str | None = None
    description: str | None = None
    click_count: int
    created_at: datetime
    expires_at: datetime | None = None

class MessageOut(BaseModel):
    ok: bool
    detail: str

class QrOut(CamelModel):
    qr_base64: str


# ---------- analytics ----------
class ClickOut(CamelModel):
    id: int
    clicked_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    browser: str | None = None
    os: str | None = None
    device_type: str | None = None
    referrer: str | None = None
    country: str | None = None
    city: str | None = None

class LocationCount(CamelModel):
    country: str
    city: str
    count: int

class BrowserCount(CamelModel):
    browser: str
    count: int

class OSCount(CamelModel):
    os: str
    count: int

class DeviceCount(CamelModel):
    device_type: str
    count: int

class LinkAnalytics(CamelModel):
    short_code: str
    total_clicks: int
    recent_clicks: list[ClickOut] = []
    top_locations: list[LocationCount] = []
    top_browsers: list[BrowserCount] = []
    top_os: list[OSCount] = Field(default=[], alias="topOS")
    top_devices: list[DeviceCount] = []


# ---------- admin ----------
class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int

class AdminUserOut(UserOut):
    created_at: datetime | None = None
    url_count: int = 0
    total_clicks: int = 0

class AdminLinkOut(LinkOut):
    username: str
    email: str

class AdminClickOut(ClickOut):
    short_code: str
    original_url: str
    user_id: int
    username: str
    email: str

class UserPage(CamelModel):
    items: list[AdminUserOut]
    pagination: Pagination

class LinkPage(CamelModel):
    items: list[AdminLinkOut]
    pagination: Pagination

class ClickPage(CamelModel):
    items: list[AdminClickOut]
    pagination: Pagination

class TopUser(CamelModel):
    id: int
    username: str
    email: str
    url_count: int

class RecentUser(CamelModel):
    id: int
    username: str
    email: str
    created_at: datetime | None = None

class SystemStats(CamelModel):
    total_users: int
    total_urls: int
    total_clicks: int
    active_urls: int
    expired_urls: int
    top_users: list[TopUser]
    recent_users: list[RecentUser]

class BanIn(BaseModel):
    banned: StrictBool
