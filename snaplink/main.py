import logging
import math
import os
import time
from datetime import datetime

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from snaplink import analytics, auth, codes, crud, database, geo, models, qr_utils, redirects, schemas
from snaplink.errors import ForbiddenError, NotFoundError, SnapLinkError, ValidationError
from snaplink.tracking import GeoLookup, RequestMeta

ENVIRONMENT = os.getenv("ENVIRONMENT", "dev")

logger = logging.getLogger("snaplink")

api = APIRouter(prefix="/api")
admin = APIRouter(prefix="/api/admin", dependencies=[Depends(auth.require_admin)])
shortcuts = APIRouter()


def public_base_url(request: Request) -> str:
    return os.getenv("PUBLIC_BASE_URL") or str(request.base_url).rstrip("/")

def paginate(page: int, limit: int, total: int) -> dict:
    return {"page": page, "limit": limit, "total": total, "total_pages": math.ceil(total / limit)}


# ---------- auth ----------
@api.post("/auth/signup", response_model=schemas.AuthOut, status_code=201)
def signup(body: schemas.SignupIn, request: Request, db: Session = Depends(database.get_db)):
    ip = RequestMeta.from_request(request).client_ip
    if crud.is_ip_banned(db, ip):
        logger.warning("Signup refused for banned ip %s", ip)
        raise ForbiddenError("Signups from this address are blocked")
    try:
        user = crud.create_user(db, body.username.strip(), body.email.strip().lower(), auth.hash_password(body.password))
    except IntegrityError:
        db.rollback()
        raise ValidationError("Username or email already exists")
    logger.info("Signed up user id=%s username=%s", user.id, user.username)
    return {"user": schemas.UserOut.model_validate(user), "token": auth.create_access_token(user.id)}

@api.post("/auth/login", response_model=schemas.AuthOut)
def login(body: schemas.LoginIn, db: Session = Depends(database.get_db)):
    user_id = auth.authenticate(db, body.email.strip().lower(), body.password)
    logger.info("Login user id=%s", user_id)
    return {"user": schemas.UserOut.model_validate(crud.get_user(db, user_id)), "token": auth.create_access_token(user_id)}


# ---------- links ----------
@api.post("/urls/create", response_model=schemas.LinkCreated, status_code=201)
def create_url(
    link_in: schemas.LinkCreate,
    request: Request,
    db: Session = Depends(database.get_db),
    user: models.User = Depends(auth.get_current_user),
):
    link = crud.create_link(db, user.id, link_in)
    logger.info("Created link: code=%s target=%s by=%s", link.short_code, link.original_url, user.id)
    return {
        "id": link.id,
        "short_code": link.short_code,
        "short_url": f"{public_base_url(request)}/{link.short_code}",
        "original_url": link.original_url,
        "created_at": link.created_at,
    }

@api.get("/urls", response_model=list[schemas.LinkOut])
def list_urls(db: Session = Depends(database.get_db), user: models.User = Depends(auth.get_current_user)):
    return crud.list_links_for_owner(db, user.id)

@api.get("/urls/{link_id}/analytics", response_model=schemas.LinkAnalytics)
def url_analytics(
    link_id: int,
    since: datetime | None = None,
    db: Session = Depends(database.get_db),
    user: models.User = Depends(auth.get_current_user),
):
    return analytics.analytics_for(db, link_id, user.id, since=since)

@api.get("/urls/{link_id}/qr", response_model=schemas.QrOut)
def url_qr(
    link_id: int,
    request: Request,
    fmt: str = Query("json", alias="format", pattern="^(json|png)$"),
    db: Session = Depends(database.get_db),
    user: models.User = Depends(auth.get_current_user),
):
    link = crud.get_owned_link(db, user.id, link_id)
    if not link:
        raise NotFoundError()
    short_url = f"{public_base_url(request)}/{link.short_code}"
    if fmt == "png":
        return Response(content=qr_utils.render_png(short_url), media_type="image/png")
    return {"qr_base64": qr_utils.render_base64(short_url)}

@api.delete("/urls/{link_id}", response_model=schemas.MessageOut)
def delete_url(link_id: int, db: Session = Depends(database.get_db), user: models.User = Depends(auth.get_current_user)):
    link = crud.delete_owned_link(db, user.id, link_id)
    if not link:
        raise NotFoundError()
    logger.info("Deleted link %s by=%s", link.short_code, user.id)
    return {"ok": True, "detail": "URL deleted successfully"}


# Health check (useful for uptime monitors & load balancers)
@api.get("/health", include_in_schema=False)
def health():
    return {"status": "ok", "env": ENVIRONMENT}

@api.get("/diag/db", include_in_schema=False)
def diag_db(db: Session = Depends(database.get_db)):
    start = time.perf_counter()
    try:
        db.execute(text("SELECT 1")).scalar_one()
    except SQLAlchemyError as exc:
        logger.exception("Database diagnostic failed")
        return JSONResponse(
            status_code=500,
            content={"status": "error", "latencyMs": round((time.perf_counter() - start) * 1000, 2), "error": str(exc)},
        )
    return {"status": "ok", "latencyMs": round((time.perf_counter() - start) * 1000, 2), "env": ENVIRONMENT}


# ---------- admin ----------
@admin.get("/stats", response_model=schemas.SystemStats)
def admin_stats(db: Session = Depends(database.get_db)):
    return analytics.system_stats(db)

@admin.get("/users", response_model=schemas.UserPage)
def admin_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(database.get_db),
):
    items = crud.list_users(db, skip=(page - 1) * limit, limit=limit)
    return {"items": items, "pagination": paginate(page, limit, crud.count_users(db))}

@admin.get("/urls", response_model=schemas.LinkPage)
def admin_urls(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(database.get_db),
):
    items = crud.list_links(db, skip=(page - 1) * limit, limit=limit)
    return {"items": items, "pagination": paginate(page, limit, crud.count_links(db))}

@admin.get("/urls/{link_id}/analytics", response_model=schemas.LinkAnalytics)
def admin_url_analytics(link_id: int, since: datetime | None = None, db: Session = Depends(database.get_db)):
    return analytics.analytics_for(db, link_id, None, since=since)

@admin.delete("/urls/{link_id}", response_model=schemas.MessageOut)
def admin_delete_url(
    link_id: int,
    db: Session = Depends(database.get_db),
    user: models.User = Depends(auth.require_admin),
):
    link = crud.delete_owned_link(db, None, link_id)
    if not link:
        raise NotFoundError()
    logger.info("Admin %s deleted link %s", user.id, link.short_code)
    return {"ok": True, "detail": f"URL '{link.short_code}' deleted"}

@admin.patch("/users/{user_id}/ban", response_model=schemas.MessageOut)
def admin_ban_user(
    user_id: int,
    body: schemas.BanIn,
    db: Session = Depends(database.get_db),
    user: models.User = Depends(auth.require_admin),
):
    if user_id == user.id:
        raise ValidationError("Cannot ban yourself")
    if not crud.get_user(db, user_id):
        raise NotFoundError("User not found")
    if not body.banned:
        return {"ok": True, "detail": "User unbanned"}
    removed = crud.delete_links_for_owner(db, user_id)
    logger.info("Admin %s banned user %s, removed %d link(s)", user.id, user_id, removed)
    return {"ok": True, "detail": f"User banned - {removed} URL(s) deleted"}

@admin.get("/clicks", response_model=schemas.ClickPage)
def admin_clicks(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(database.get_db),
):
    items = analytics.list_clicks(db, skip=(page - 1) * limit, limit=limit)
    return {"items": items, "pagination": paginate(page, limit, analytics.count_clicks(db))}


# ---------- redirect (registered last so /api/* wins) ----------
@shortcuts.get("/{code}", include_in_schema=False)
def follow_short_code(code: str, request: Request, db: Session = Depends(database.get_db)):
    if not codes.is_well_formed(code):
        raise NotFoundError()
    target = redirects.resolve(db, code, RequestMeta.from_request(request), geo_lookup=request.app.state.geo_lookup)
    logger.info("Redirect %s -> %s", code, target)
    return RedirectResponse(url=target, status_code=302)


# ---------- errors ----------
async def snaplink_error_handler(request: Request, exc: SnapLinkError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    error = database.translate_error(exc)
    return JSONResponse(status_code=error.status_code, content={"detail": error.detail})

async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


def create_app(session_factory: sessionmaker | None = None, geo_lookup: GeoLookup | None = None) -> FastAPI:
    """Build the application around an explicit session factory.

    Without one, an engine is built from the environment and its tables are
    created. Serve with ``uvicorn snaplink.main:create_app --factory``.
    """
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )
    if session_factory is None:
        engine = database.build_engine()
        database.init_db(engine)
        session_factory = database.make_session_factory(engine)

    app = FastAPI(
        title="SnapLink",
        description="Short links with click analytics: geo, browser and device breakdowns per link.",
        version="1.0.0",
    )
    app.state.session_factory = session_factory
    app.state.geo_lookup = geo_lookup or geo.lookup_ip

    origins = ["*"] if ENVIRONMENT == "dev" else [os.getenv("FRONTEND_URL", "http://localhost:3000")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SnapLinkError, snaplink_error_handler)
    app.add_exception_handler(SQLAlchemyError, store_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(api)
    app.include_router(admin)
    app.include_router(shortcuts)
    return app
