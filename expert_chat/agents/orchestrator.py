"""
Expert chat orchestrator (single tool round trip)

Runs one conversational turn:

    FirstCall -> (tool calls? ExecuteTools -> SecondCall : StreamDirect) -> Done

The first model call is non-streaming with every registered tool offered.
Requested tools run concurrently and their results are appended as `tool`
messages; the follow-up call streams with tools disabled, so a turn makes
at most one tool round trip. Without tool calls the same messages are
re-sent as a streaming request.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional

import httpx

from .. import config
from ..services.llm_gateway import ChatCompletionsClient
from ..services.market_prices import PriceStore
from ..services.reference_data import ReferenceData, load_reference_data
from ..services.schemes import SchemeStore
from ..services.weather import WeatherClient
from .registry import ToolRegistry, default_registry
from .tools import ToolCall, ToolExecutor, ToolResult

logger = logging.getLogger(__name__)


class TurnTimeout(Exception):
    pass


@dataclass
class AgentReply:
    """An open upstream stream plus what happened before it."""
    response: httpx.Response
    tool_names: List[str] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)
    messages: List[Dict[str, Any]] = field(default_factory=list)


def _normalize_tool_calls(raw_calls: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # results are correlated by id, so every call needs one
    out = []
    for raw in raw_calls:
        call = dict(raw)
        if not call.get("id"):
            call["id"] = f"call_{uuid.uuid4().hex[:12]}"
        call.setdefault("type", "function")
        out.append(call)
    return out


class ExpertChatOrchestrator:
    def __init__(self, gateway: ChatCompletionsClient, registry: ToolRegistry, executor: ToolExecutor,
                 request_timeout: Optional[float] = None):
        self.gateway = gateway
        self.registry = registry
        self.executor = executor
        self.request_timeout = request_timeout or config.REQUEST_TIMEOUT_SECONDS

    async def run(self, messages: List[Dict[str, Any]]) -> AgentReply:
        """Run the turn up to the point where the answer starts streaming."""
        return await self._bounded(self._run(messages), "run")

    async def run_direct(self, messages: List[Dict[str, Any]]) -> AgentReply:
        """Plain chat turn: stream without tools, under the same turn timeout."""
        return await self._bounded(self.stream_direct(messages), "run_direct")

    async def _bounded(self, turn: Awaitable[AgentReply], label: str) -> AgentReply:
        try:
            return await asyncio.wait_for(turn, self.request_timeout)
        except asyncio.TimeoutError:
            logger.error("[%s] turn exceeded %ss before streaming started", label, self.request_timeout)
            raise TurnTimeout()

    async def _run(self, messages: List[Dict[str, Any]]) -> AgentReply:
        logger.info("[run] processing agentic chat with %d messages", len(messages))
        first = await self.gateway.complete(messages, tools=self.registry.to_openai_tools())

        raw_calls = first.get("tool_calls") or []
        if not raw_calls:
            return await self.stream_direct(messages)

        raw_calls = _normalize_tool_calls(raw_calls)
        logger.info("[run] AI requested %d tool calls", len(raw_calls))
        calls = [ToolCall.from_openai(c) for c in raw_calls]
        results = await self.executor.execute_all(calls)

        follow_up = list(messages)
        follow_up.append({"role": "assistant", "content": first.get("content"), "tool_calls": raw_calls})
        follow_up.extend(r.to_message() for r in results)

        response = await self.gateway.open_stream(follow_up)
        return AgentReply(
            response=response,
            tool_names=[c.name for c in calls],
            tool_results=results,
            messages=follow_up,
        )

    async def stream_direct(self, messages: List[Dict[str, Any]]) -> AgentReply:
        """Stream an answer for `messages` without offering tools."""
        response = await self.gateway.open_stream(messages)
        return AgentReply(response=response, messages=list(messages))

    async def aclose(self) -> None:
        await self.gateway.aclose()


def create_orchestrator(db_path: Optional[str] = None, reference: Optional[ReferenceData] = None,
                        gateway: Optional[ChatCompletionsClient] = None,
                        weather: Optional[WeatherClient] = None) -> ExpertChatOrchestrator:
    db_path = db_path or config.DB_PATH
    registry = default_registry()
    executor = ToolExecutor(
        registry,
        weather=weather or WeatherClient(),
        prices=PriceStore(db_path),
        schemes=SchemeStore(db_path),
        reference=reference or load_reference_data(),
    )
    return ExpertChatOrchestrator(gateway or ChatCompletionsClient(), registry, executor)
