from fastapi import FastAPI
from dotenv import load_dotenv
load_dotenv(dotenv_path="backend/.env", override=False)
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from .db.database import SessionLocal, ensure_schema
from .models.email_model import Email as EmailModel
from .models.user_model import User as UserModel
from .routers import emails, categories
from .services.background_sync import start_auto_sync, stop_auto_sync, get_sync_status
from .services.web_automation import browser_pool
from .core.errors import AppError
from .core.logging import init_logging
from sqlalchemy import func
import logging, os, time, uuid
from fastapi import Request
from fastapi.responses import JSONResponse


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    init_logging()
    ensure_schema()
    if os.getenv('AUTO_SYNC_ENABLED', '1') == '1':
        start_auto_sync()
    yield
    # Shutdown
    await stop_auto_sync()
    try:
        await browser_pool.shutdown()
    except Exception as e:
        logging.getLogger(__name__).warning("browser_shutdown_failed", exc_info=e)

app = FastAPI(title="AI Email Sorter", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv('CORS_ORIGINS', '*').split(','),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(emails.router, prefix="/api/emails", tags=["emails"])
app.include_router(categories.router, prefix="/api/categories", tags=["categories"])


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.code})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": "Invalid request", "error": "bad_request", "errors": errors})


@app.get("/health")
async def health():
    db = SessionLocal()
    try:
        total = db.query(func.count(EmailModel.id)).scalar() or 0
        accounts = db.query(func.count(UserModel.id)).scalar() or 0
    finally:
        db.close()
    return {"status": "ok", "emails": total, "accounts": accounts, "auto_sync": get_sync_status()["running"]}


@app.middleware("http")
async def timing_logger(request: Request, call_next):
    trace_id = request.headers.get("X-Trace-Id", str(uuid.uuid4())[:8])
    start = time.perf_counter()
    try:
        response = await call_next(request)
        duration = (time.perf_counter()-start)*1000
        logging.getLogger().info(
            f"{request.method} {request.url.path} {response.status_code} {duration:.1f}ms",
            extra={"trace_id": trace_id, "method": request.method, "path": request.url.path, "status": response.status_code, "duration_ms": round(duration,1)}
        )
        response.headers['X-Trace-Id'] = trace_id
        return response
    except Exception as exc:
        duration = (time.perf_counter()-start)*1000
        logging.getLogger().error(
            f"ERR {request.method} {request.url.path} {type(exc).__name__}",
            exc_info=exc,
            extra={"trace_id": trace_id, "method": request.method, "path": request.url.path, "status": 500, "duration_ms": round(duration,1)}
        )
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error", "trace_id": trace_id})
