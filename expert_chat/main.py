import logging
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import config
from .agents.conversation import (
    PLAIN_SYSTEM_PROMPT,
    ConversationRejected,
    PlainChatRequest,
    assemble_messages,
    parse_chat_request,
)
from .agents.orchestrator import ExpertChatOrchestrator, TurnTimeout, create_orchestrator
from .agents.relay import TOOL_CALLS_HEADER, stream_reply
from .auth import require_user
from .services import storage
from .services.llm_gateway import GatewayError
from .services.weather import WeatherClient, WeatherServiceError

logger = logging.getLogger(__name__)

app = FastAPI(title="Kisan Mitra Expert Chat API", version="0.3.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[TOOL_CALLS_HEADER],
)


class WeatherRequest(BaseModel):
    lat: float = 22.7196
    lon: float = 75.8577
    locationName: str = "Indore, Madhya Pradesh"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(content={"error": message}, status_code=status_code)


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    logger.warning("[%s] input validation failed: %s", request.url.path, exc.errors())
    return _error(400, "Invalid input format")


_orchestrator: Optional[ExpertChatOrchestrator] = None
_weather_client: Optional[WeatherClient] = None


def get_orchestrator() -> ExpertChatOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = create_orchestrator()
    return _orchestrator


def get_weather_client() -> WeatherClient:
    global _weather_client
    if _weather_client is None:
        _weather_client = WeatherClient()
    return _weather_client


@app.on_event("startup")
def _init_store():
    storage.init_db(config.DB_PATH)
    if config.SEED_SAMPLE_DATA:
        try:
            storage.seed_sample_data(config.DB_PATH)
        except Exception as e:
            # sample data is a convenience; the service runs on an empty store
            logger.warning("[startup] sample data seeding failed: %s", e)


@app.on_event("shutdown")
async def _close_clients():
    if _orchestrator is not None:
        await _orchestrator.aclose()


@app.get("/healthz")
def healthz():
    return {"status": "ok"}


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise ConversationRejected("request body is not valid JSON")


@app.post("/api/expert_chat_agent")
async def expert_chat_agent(request: Request, user: Dict[str, Any] = Depends(require_user),
                            orchestrator: ExpertChatOrchestrator = Depends(get_orchestrator)):
    """Tool-augmented advisor chat. Streams SSE; `X-Tool-Calls` lists the tools used."""
    try:
        chat = parse_chat_request(await _read_json(request))
    except ConversationRejected as e:
        logger.warning("[expert_chat_agent] input validation failed: %s", e)
        return _error(400, "Invalid input format")

    logger.info("[expert_chat_agent] user=%s conversation=%s messages=%d",
                user.get("sub"), chat.conversationId, len(chat.messages))
    try:
        reply = await orchestrator.run(assemble_messages(chat))
    except GatewayError as e:
        return _error(e.status_code, e.message)
    except TurnTimeout:
        return _error(500, "Request timed out")
    except Exception as e:
        logger.exception("[expert_chat_agent] failed: %s", e)
        return _error(500, "An unexpected error occurred")

    if reply.tool_names:
        logger.info("[expert_chat_agent] streaming answer after tools=%s", reply.tool_names)
    return stream_reply(reply)


@app.post("/api/expert_chat")
async def expert_chat(request: Request, user: Dict[str, Any] = Depends(require_user),
                      orchestrator: ExpertChatOrchestrator = Depends(get_orchestrator)):
    """Plain advisor chat without tools."""
    try:
        chat = parse_chat_request(await _read_json(request), PlainChatRequest)
    except ConversationRejected as e:
        logger.warning("[expert_chat] input validation failed: %s", e)
        return _error(400, "Invalid input format. Messages must be an array with valid role and content.")

    logger.info("[expert_chat] user=%s messages=%d", user.get("sub"), len(chat.messages))
    try:
        reply = await orchestrator.run_direct(assemble_messages(chat, PLAIN_SYSTEM_PROMPT))
    except GatewayError as e:
        return _error(e.status_code, e.message)
    except TurnTimeout:
        return _error(500, "Request timed out")
    except Exception as e:
        logger.exception("[expert_chat] failed: %s", e)
        return _error(500, "An unexpected error occurred")
    return stream_reply(reply)


@app.post("/api/weather")
async def weather(req: Optional[WeatherRequest] = None, weather_client: WeatherClient = Depends(get_weather_client)):
    req = req or WeatherRequest()
    try:
        return await weather_client.fetch(req.lat, req.lon, req.locationName)
    except WeatherServiceError as e:
        logger.error("[weather] fetch failed: %s", e)
        return _error(500, str(e))


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
