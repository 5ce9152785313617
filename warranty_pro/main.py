import os
import logging

from fastapi import Depends, FastAPI, Form, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from .deps import (
    ACCESS_TOKEN_EXPIRE_HOURS,
    create_access_token,
    get_db,
    init_db,
    require_cron,
    verify_password,
)
from .db_models import UserDB
from .errors import WarrantyProError
from .routes import claims, notifications
from .services import llm as llm_service
from .services.delivery import DeliveryChannel, get_channel
from .services.expiry import run_expiry_check
from .services.scheduler import start_scheduler

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Warranty Pro",
    description="Warranty expiry alerts and AI-assisted claim filing.",
    version="0.3.0",
)

app.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])
app.include_router(claims.router, prefix="/claims", tags=["Claims"])
app.include_router(claims.router, prefix="/api/claims", tags=["Claims"])


@app.exception_handler(WarrantyProError)
async def warranty_pro_error_handler(request: Request, exc: WarrantyProError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
async def startup_event():
    init_db()
    interval = int(os.getenv("EXPIRY_CHECK_INTERVAL_MINUTES", "0"))
    if interval > 0:
        start_scheduler(interval)


@app.get("/favicon.ico")
def favicon():
    return Response(status_code=204)


@app.get("/")
def health():
    return {"status": "ok"}


@app.get("/health/llm")
def health_llm():
    ok, detail, model = llm_service.health()
    return {"ok": ok, "detail": detail, "model": model}


@app.get("/health/email")
def health_email(channel: DeliveryChannel = Depends(get_channel)):
    ok, detail = channel.health()
    return {"ok": ok, "detail": detail, "channel": channel.name}


@app.post("/auth/login")
def login(
    response: Response,
    username: str = Form(...),
    password: str = Form(...),
    db=Depends(get_db),
):
    user = db.query(UserDB).filter_by(username=username).first()
    if not user or not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_access_token(user.username, user.role)
    response.set_cookie(
        "access_token",
        token,
        httponly=True,
        max_age=ACCESS_TOKEN_EXPIRE_HOURS * 3600,
        samesite="lax",
    )
    return {"access_token": token, "token_type": "bearer", "role": user.role}


@app.post("/auth/logout")
def logout(response: Response):
    response.delete_cookie("access_token")
    return {"status": "ok"}


@app.post("/cron/daily-check", dependencies=[Depends(require_cron)])
def daily_check(db=Depends(get_db), channel: DeliveryChannel = Depends(get_channel)):
    try:
        created = run_expiry_check(db, channel=channel)
    except Exception as exc:
        logger.exception("daily check failed", exc_info=exc)
        raise HTTPException(status_code=500, detail="Daily check failed")
    return {"success": True, "sent_count": created, "message": f"Sent {created} notifications"}
