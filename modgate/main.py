import os
import logging
import asyncio
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load environment variables at the very beginning
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

from modgate.config import GatewayConfig
from modgate.errors import PublishError
from modgate.moderation import build_moderation_service
from modgate.schemas import ModerateRequest, ModerateResponse, XPostRequest, XPostResponse
from modgate.x_client import XApiClient

PROCESSING_FAILED = {"result": "rejected", "reason": "Failed to process moderation request"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    config = GatewayConfig.from_env()
    app.state.config = config
    app.state.moderation_service = build_moderation_service(config)
    app.state.x_client = XApiClient(config.x_bearer_token, timeout=config.fetch_timeout_seconds) if config.x_bearer_token else None
    if app.state.x_client is None:
        logger.info("[STARTUP] X_BEARER_TOKEN not set, /x-post disabled")
    yield
    logger.info("[SHUTDOWN] Moderation gateway stopped")


app = FastAPI(title="Content Moderation Gateway", lifespan=lifespan)

# ---- CORS ----
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _run_moderation(request: Request, text: str, images, videos):
    service = request.app.state.moderation_service
    timeout = request.app.state.config.request_timeout_seconds
    return await asyncio.wait_for(service.moderate(text, images, videos), timeout=timeout)


# ---- Healthcheck ----
@app.get("/health")
async def health():
    return {"status": "healthy"}


@app.post("/moderate", response_model=ModerateResponse, response_model_exclude_none=True)
async def moderate(body: ModerateRequest, request: Request):
    logger.info(f"[REQUEST] /moderate text_len={len(body.text)} images={len(body.images)} videos={len(body.videos)}")
    try:
        result = await _run_moderation(request, body.text, body.images, body.videos)
    except asyncio.TimeoutError:
        logger.error("[REQUEST] Moderation timed out")
        return JSONResponse(status_code=504, content={"result": "rejected", "reason": "Moderation timed out"})
    except Exception as e:
        logger.error(f"[REQUEST] Moderation failed: {e}", exc_info=True)
        return JSONResponse(status_code=500, content=PROCESSING_FAILED)
    return ModerateResponse.from_result(result)


@app.post("/x-post", response_model=XPostResponse, response_model_exclude_none=True)
async def x_post(body: XPostRequest, request: Request):
    x_client = request.app.state.x_client
    if x_client is None:
        return JSONResponse(
            status_code=503,
            content={"success": False, "error": "X posting is not configured", "moderation_result": PROCESSING_FAILED},
        )

    logger.info(f"[REQUEST] /x-post text_len={len(body.text)} images={len(body.images)}")
    # The poster publishes text only; images would be silently dropped
    if body.images:
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": "Posting images is not supported",
                "moderation_result": {"result": "rejected", "reason": "Posting images is not supported"},
            },
        )

    try:
        result = await _run_moderation(request, body.text, [], [])
    except asyncio.TimeoutError:
        logger.error("[REQUEST] Moderation timed out")
        return JSONResponse(
            status_code=504,
            content={"success": False, "error": "Moderation timed out", "moderation_result": PROCESSING_FAILED},
        )
    except Exception as e:
        logger.error(f"[REQUEST] Moderation failed: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Moderation failed", "moderation_result": PROCESSING_FAILED},
        )

    moderation = ModerateResponse.from_result(result)
    if not result.is_safe:
        logger.info(f"[X] Post blocked by moderation: {result.reason}")
        rejected = XPostResponse(success=False, moderation_result=moderation, error="Content rejected by moderation")
        return JSONResponse(status_code=400, content=rejected.model_dump(mode="json", exclude_none=True))

    try:
        post_id = await x_client.post(body.text, reply_to=body.reply_to, quote_tweet=body.quote_tweet)
    except PublishError as e:
        failed = XPostResponse(success=False, moderation_result=moderation, error=str(e))
        return JSONResponse(status_code=502, content=failed.model_dump(mode="json", exclude_none=True))

    return XPostResponse(success=True, post_id=post_id, moderation_result=moderation)
