"""
Tool executors for the expert chat agent.

`ToolExecutor.execute()` turns one model-issued tool call into a
`ToolResult` whose content is always a JSON string. Collaborator failures,
bad arguments and timeouts become `{"error": ...}` payloads; nothing is
raised back into the orchestrator.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .. import config
from ..services import crop_advice
from ..services.market_prices import PriceStore, format_price_report
from ..services.reference_data import ReferenceData
from ..services.schemes import SchemeStore, format_scheme_report
from ..services.weather import WeatherClient, WeatherServiceError, summarize_for_chat
from .registry import (
    CropAdviceArgs,
    InvalidArguments,
    MarketPriceArgs,
    SchemeSearchArgs,
    ToolArgs,
    ToolName,
    ToolRegistry,
    UnknownTool,
    WeatherArgs,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: Any

    @classmethod
    def from_openai(cls, raw: Dict[str, Any]) -> "ToolCall":
        fn = raw.get("function") or {}
        return cls(id=raw["id"], name=fn.get("name", ""), arguments=fn.get("arguments"))


@dataclass(frozen=True)
class ToolResult:
    tool_call_id: str
    name: str
    content: str

    @property
    def is_error(self) -> bool:
        try:
            payload = json.loads(self.content)
        except ValueError:
            return False
        return isinstance(payload, dict) and "error" in payload

    def to_message(self) -> Dict[str, Any]:
        return {"role": "tool", "tool_call_id": self.tool_call_id, "content": self.content}


class ToolExecutor:
    def __init__(self, registry: ToolRegistry, weather: WeatherClient, prices: PriceStore,
                 schemes: SchemeStore, reference: ReferenceData, tool_timeout: Optional[float] = None):
        self.registry = registry
        self.weather = weather
        self.prices = prices
        self.schemes = schemes
        self.reference = reference
        self.tool_timeout = tool_timeout or config.TOOL_TIMEOUT_SECONDS

    async def execute_all(self, calls: List[ToolCall]) -> List[ToolResult]:
        """Run every call concurrently; results come back in call order."""
        return list(await asyncio.gather(*(self.execute(c) for c in calls)))

    async def execute(self, call: ToolCall) -> ToolResult:
        logger.info("[execute] tool=%s id=%s args=%s", call.name, call.id, call.arguments)
        try:
            args = self.registry.validate(call.name, call.arguments)
            payload = await asyncio.wait_for(self.dispatch(self.registry.resolve(call.name), args), self.tool_timeout)
        except UnknownTool as e:
            logger.warning("[execute] %s", e)
            payload = {"error": str(e)}
        except InvalidArguments as e:
            logger.warning("[execute] %s: %s", e, e.details)
            payload = {"error": str(e), "details": e.details}
        except asyncio.TimeoutError:
            logger.warning("[execute] tool %s timed out after %ss", call.name, self.tool_timeout)
            payload = {"error": f"{call.name} took too long to respond"}
        except Exception:
            logger.exception("[execute] tool %s failed", call.name)
            payload = {"error": f"Unable to complete {call.name}"}
        return ToolResult(tool_call_id=call.id, name=call.name, content=json.dumps(payload, ensure_ascii=False, default=str))

    async def dispatch(self, name: ToolName, args: ToolArgs) -> Dict[str, Any]:
        if name is ToolName.GET_WEATHER:
            return await self.get_weather(args)
        if name is ToolName.GET_MARKET_PRICES:
            return await self.get_market_prices(args)
        if name is ToolName.SEARCH_SCHEMES:
            return await self.search_schemes(args)
        if name is ToolName.ANALYZE_CROP_ADVICE:
            return await self.analyze_crop_advice(args)
        raise UnknownTool(name.value)

    async def get_weather(self, args: WeatherArgs) -> Dict[str, Any]:
        lat, lon = args.lat, args.lon
        if lat is None or lon is None:
            lat, lon = self.reference.resolve_coordinates(args.location)
        try:
            data = await self.weather.fetch(lat, lon, args.location)
            return summarize_for_chat(data)
        except (WeatherServiceError, KeyError, TypeError) as e:
            logger.warning("[get_weather] %s: %s", args.location, e)
            return {"error": "Unable to fetch weather information"}

    async def get_market_prices(self, args: MarketPriceArgs) -> Dict[str, Any]:
        try:
            rows = await self.prices.aquery(args.commodity, state=args.state, mandi=args.mandi)
        except Exception as e:
            logger.warning("[get_market_prices] query failed: %s", e)
            return {"error": "Unable to fetch market prices"}
        return format_price_report(args.commodity, rows, state=args.state)

    async def search_schemes(self, args: SchemeSearchArgs) -> Dict[str, Any]:
        try:
            rows = await self.schemes.asearch(args.query, state=args.state, crop=args.crop)
        except Exception as e:
            logger.warning("[search_schemes] query failed: %s", e)
            return {"error": "Unable to search schemes"}
        return format_scheme_report(args.query, rows, self.reference.common_schemes)

    async def analyze_crop_advice(self, args: CropAdviceArgs) -> Dict[str, Any]:
        return crop_advice.advise(self.reference.crop_knowledge, args.crop, stage=args.stage,
                                  issue=args.issue, location=args.location)
