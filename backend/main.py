import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from database import init_db
from routes.agent import router as agent_router
from routes.ai import router as ai_router
from routes.events import router as events_router
from routes.invitations import router as invitations_router
from services.errors import AssistantError, RateLimited, ValidationFailed
from services.tool_registry import validation_details

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(lifespan=lifespan)
WEB_ORIGIN = os.getenv("WEB_ORIGIN", "")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o for o in ["http://localhost:3000", WEB_ORIGIN] if o],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AssistantError)
def handle_assistant_error(request: Request, exc: AssistantError):
    # 5xx는 상세 메시지 대신 친절한 문구만 노출
    body = exc.to_dict()
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
        body["message"] = exc.friendly_message
    headers = {}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(exc.retry_after_seconds)
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


@app.exception_handler(RequestValidationError)
def handle_request_validation(request: Request, exc: RequestValidationError):
    err = ValidationFailed("Validation failed", validation_details(exc))
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


app.include_router(agent_router)
app.include_router(ai_router)
app.include_router(events_router)
app.include_router(invitations_router)


@app.get("/health")
def health():
    return {"ok": True}
