import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from expert_chat.agents.orchestrator import ExpertChatOrchestrator
from expert_chat.agents.registry import default_registry
from expert_chat.agents.tools import ToolExecutor
from expert_chat.auth import create_access_token
from expert_chat.services import storage
from expert_chat.services.llm_gateway import ChatCompletionsClient
from expert_chat.services.market_prices import PriceStore
from expert_chat.services.reference_data import load_reference_data
from expert_chat.services.schemes import SchemeStore

LLM_URL = "https://llm.test/v1/chat/completions"

PRICE_ROWS = [
    {"commodity": "Wheat", "mandi_name": "Indore", "mandi_state": "Madhya Pradesh", "mandi_district": "Indore",
     "min_price": 2250, "max_price": 2610, "modal_price": 2450, "price_unit": "quintal", "price_date": "2026-10-15"},
    {"commodity": "Wheat", "mandi_name": "Dewas", "mandi_state": "Madhya Pradesh", "mandi_district": "Dewas",
     "min_price": 2200, "max_price": 2540, "modal_price": 2350, "price_unit": "quintal", "price_date": "2026-10-13"},
    {"commodity": "Wheat", "mandi_name": "Khanna", "mandi_state": "Punjab", "mandi_district": "Ludhiana",
     "min_price": 2300, "max_price": 2500, "modal_price": 2425, "price_unit": "quintal", "price_date": "2026-10-14"},
    {"commodity": "Soybean", "mandi_name": "Indore", "mandi_state": "Madhya Pradesh", "mandi_district": "Indore",
     "min_price": 4200, "max_price": 4780, "modal_price": 4550, "price_unit": "quintal", "price_date": "2026-10-15"},
]

SCHEME_ROWS = [
    {"scheme_name": "Pradhan Mantri Fasal Bima Yojana", "ministry": "Agriculture",
     "description": "Crop insurance against natural calamities", "benefits": "Low premium insurance",
     "application_url": "https://pmfby.gov.in", "target_states": [], "target_crops": []},
    {"scheme_name": "Bhavantar Bhugtan Yojana", "ministry": "Government of Madhya Pradesh",
     "description": "Price deficiency payment for soybean growers", "benefits": "MSP difference paid",
     "target_states": ["Madhya Pradesh"], "target_crops": ["Soybean"]},
    {"scheme_name": "Old Insurance Pilot", "description": "Discontinued crop insurance pilot",
     "benefits": "None", "is_active": False},
]


def weather_doc(temp: int = 30, location: str = "Indore") -> Dict[str, Any]:
    return {
        "location": location,
        "current": {"temp": temp, "feelsLike": temp + 2, "humidity": 55, "pressure": 1012, "windSpeed": 12,
                    "condition": "sunny", "description": "clear sky", "rainfall": 0},
        "hourly": [],
        "weekly": [
            {"day": "Today" if i == 0 else f"D{i}", "date": f"Oct {17 + i}", "condition": "sunny",
             "high": temp + 2, "low": temp - 8, "rainChance": 10, "humidity": 50, "rainfall": 0}
            for i in range(7)
        ],
        "lastUpdated": "2026-10-17T06:00:00Z",
        "meta": {"isMock": False},
    }


class FakeWeather:
    """Stands in for WeatherClient; records the coordinates it was asked for."""

    def __init__(self, temp: int = 30, delay: float = 0.0, error: Optional[Exception] = None):
        self.temp = temp
        self.delay = delay
        self.error = error
        self.calls: List[tuple] = []

    async def fetch(self, lat: float, lon: float, location_name: str) -> Dict[str, Any]:
        self.calls.append((lat, lon, location_name))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return weather_doc(self.temp, location_name)


def sse_body(tokens: List[str]) -> bytes:
    lines = []
    for t in tokens:
        chunk = {"choices": [{"index": 0, "delta": {"content": t}}]}
        lines.append(f"data: {json.dumps(chunk, ensure_ascii=False)}\n\n")
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def tool_call(call_id: str, name: str, arguments: Any) -> Dict[str, Any]:
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return {"id": call_id, "type": "function", "function": {"name": name, "arguments": arguments}}


class ScriptedGateway:
    """MockTransport handler playing the model gateway.

    Non-streaming requests get `first_message` (or `first_status`); streaming
    requests get an SSE body (or `stream_status`), after `stream_delay`
    seconds. Every request body is kept.
    """

    def __init__(self, first_message: Optional[Dict[str, Any]] = None, tokens: Optional[List[str]] = None,
                 first_status: int = 200, stream_status: int = 200, stream_delay: float = 0.0):
        self.first_message = first_message or {"role": "assistant", "content": "Namaste!"}
        self.tokens = tokens or ["Namaste", ", kisan ", "bhai."]
        self.first_status = first_status
        self.stream_status = stream_status
        self.stream_delay = stream_delay
        self.requests: List[Dict[str, Any]] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        if body.get("stream"):
            if self.stream_delay:
                await asyncio.sleep(self.stream_delay)
            if self.stream_status != 200:
                return httpx.Response(self.stream_status, json={"error": "upstream"})
            return httpx.Response(200, content=sse_body(self.tokens), headers={"content-type": "text/event-stream"})
        if self.first_status != 200:
            return httpx.Response(self.first_status, json={"error": "upstream"})
        return httpx.Response(200, json={"choices": [{"index": 0, "message": self.first_message}]})

    @property
    def stream_requests(self) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r.get("stream")]


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "kisan.db")
    storage.init_db(path)
    storage.insert_prices(path, PRICE_ROWS)
    storage.insert_schemes(path, SCHEME_ROWS)
    return path


@pytest.fixture
def reference():
    return load_reference_data()


@pytest.fixture
def fake_weather():
    return FakeWeather()


@pytest.fixture
def make_executor(db_path, reference, fake_weather):
    def _make(weather=None, prices=None, schemes=None, tool_timeout: float = 5.0) -> ToolExecutor:
        return ToolExecutor(
            default_registry(),
            weather=weather or fake_weather,
            prices=prices or PriceStore(db_path),
            schemes=schemes or SchemeStore(db_path),
            reference=reference,
            tool_timeout=tool_timeout,
        )
    return _make


@pytest.fixture
def make_orchestrator(make_executor):
    def _make(gateway: Callable[[httpx.Request], httpx.Response], executor: Optional[ToolExecutor] = None,
              api_key: str = "test-key", request_timeout: float = 10.0) -> ExpertChatOrchestrator:
        client = ChatCompletionsClient(api_url=LLM_URL, api_key=api_key, model="test-model",
                                       transport=httpx.MockTransport(gateway))
        executor = executor or make_executor()
        return ExpertChatOrchestrator(client, executor.registry, executor, request_timeout=request_timeout)
    return _make


@pytest.fixture
def auth_headers():
    token = create_access_token({"id": 42, "username": "ramesh"})
    return {"Authorization": f"Bearer {token}"}
