import asyncio
import json

import pytest

from expert_chat.agents.conversation import SYSTEM_PROMPT
from expert_chat.agents.orchestrator import TurnTimeout
from expert_chat.services.llm_gateway import GatewayNotConfigured, QuotaExhaustedError, RateLimitedError
from expert_chat.services.weather import WeatherServiceError

from .conftest import FakeWeather, ScriptedGateway, sse_body, tool_call

MESSAGES = [
    {"role": "system", "content": SYSTEM_PROMPT},
    {"role": "user", "content": "Should I irrigate my wheat in Indore this week?"},
]


async def _drain(reply):
    body = await reply.response.aread()
    await reply.response.aclose()
    return body


@pytest.mark.asyncio
async def test_no_tool_calls_streams_directly(make_orchestrator):
    gateway = ScriptedGateway(first_message={"role": "assistant", "content": "Namaste"})
    orchestrator = make_orchestrator(gateway)

    reply = await orchestrator.run(MESSAGES)

    assert reply.tool_names == []
    assert await _drain(reply) == sse_body(gateway.tokens)
    first, second = gateway.requests
    assert first["tools"] and first["tool_choice"] == "auto"
    assert "stream" not in first
    assert second["stream"] is True
    assert "tools" not in second
    assert second["messages"] == MESSAGES


@pytest.mark.asyncio
async def test_tool_results_answer_each_call_in_order(make_orchestrator):
    gateway = ScriptedGateway(first_message={
        "role": "assistant",
        "content": None,
        "tool_calls": [
            tool_call("call_w", "get_weather", {"location": "Indore, Madhya Pradesh"}),
            tool_call("call_p", "get_market_prices", {"commodity": "Wheat", "state": "Madhya Pradesh"}),
            tool_call("call_a", "analyze_crop_advice", {"crop": "Wheat", "stage": "vegetative"}),
        ],
    })
    orchestrator = make_orchestrator(gateway)

    reply = await orchestrator.run(MESSAGES)
    await _drain(reply)

    assert reply.tool_names == ["get_weather", "get_market_prices", "analyze_crop_advice"]
    follow_up = gateway.stream_requests[0]["messages"]
    assert follow_up[:2] == MESSAGES
    assistant = follow_up[2]
    assert assistant["role"] == "assistant"
    assert [c["id"] for c in assistant["tool_calls"]] == ["call_w", "call_p", "call_a"]
    tool_messages = follow_up[3:]
    assert [m["role"] for m in tool_messages] == ["tool"] * 3
    assert [m["tool_call_id"] for m in tool_messages] == ["call_w", "call_p", "call_a"]
    assert json.loads(tool_messages[1]["content"])["prices"][0]["mandi"] == "Indore"


@pytest.mark.asyncio
async def test_calls_without_ids_get_one(make_orchestrator):
    raw = tool_call("", "analyze_crop_advice", {"crop": "Rice"})
    gateway = ScriptedGateway(first_message={"role": "assistant", "content": "", "tool_calls": [raw]})
    orchestrator = make_orchestrator(gateway)

    reply = await orchestrator.run(MESSAGES)
    await _drain(reply)

    follow_up = gateway.stream_requests[0]["messages"]
    issued = follow_up[2]["tool_calls"][0]["id"]
    assert issued.startswith("call_")
    assert follow_up[3]["tool_call_id"] == issued


@pytest.mark.asyncio
async def test_failing_tool_still_produces_an_answer(make_orchestrator, make_executor):
    gateway = ScriptedGateway(first_message={
        "role": "assistant",
        "content": None,
        "tool_calls": [
            tool_call("call_w", "get_weather", {"location": "Indore"}),
            tool_call("call_x", "get_horoscope", {}),
        ],
    })
    executor = make_executor(weather=FakeWeather(error=WeatherServiceError("Weather API error: 500")))
    orchestrator = make_orchestrator(gateway, executor=executor)

    reply = await orchestrator.run(MESSAGES)

    assert await _drain(reply) == sse_body(gateway.tokens)
    tool_messages = gateway.stream_requests[0]["messages"][3:]
    assert json.loads(tool_messages[0]["content"]) == {"error": "Unable to fetch weather information"}
    assert json.loads(tool_messages[1]["content"]) == {"error": "Unknown tool: get_horoscope"}
    assert [r.is_error for r in reply.tool_results] == [True, True]


@pytest.mark.asyncio
async def test_tools_run_concurrently(make_orchestrator, make_executor):
    gateway = ScriptedGateway(first_message={
        "role": "assistant",
        "content": None,
        "tool_calls": [tool_call(f"call_{i}", "get_weather", {"location": "Indore"}) for i in range(3)],
    })
    weather = FakeWeather(delay=0.3)
    orchestrator = make_orchestrator(gateway, executor=make_executor(weather=weather))

    loop = asyncio.get_running_loop()
    started = loop.time()
    reply = await orchestrator.run(MESSAGES)
    elapsed = loop.time() - started
    await _drain(reply)

    assert len(weather.calls) == 3
    assert elapsed < 0.6


@pytest.mark.asyncio
@pytest.mark.parametrize("status, error", [(429, RateLimitedError), (402, QuotaExhaustedError)])
async def test_first_call_errors_are_mapped(make_orchestrator, status, error):
    gateway = ScriptedGateway(first_status=status)
    with pytest.raises(error):
        await make_orchestrator(gateway).run(MESSAGES)
    assert len(gateway.requests) == 1


@pytest.mark.asyncio
async def test_second_call_error_is_mapped(make_orchestrator):
    gateway = ScriptedGateway(
        first_message={"role": "assistant", "content": None,
                       "tool_calls": [tool_call("call_a", "analyze_crop_advice", {"crop": "Wheat"})]},
        stream_status=429,
    )
    with pytest.raises(RateLimitedError):
        await make_orchestrator(gateway).run(MESSAGES)


@pytest.mark.asyncio
async def test_missing_api_key_never_calls_upstream(make_orchestrator):
    gateway = ScriptedGateway()
    with pytest.raises(GatewayNotConfigured):
        await make_orchestrator(gateway, api_key="").run(MESSAGES)
    assert gateway.requests == []


@pytest.mark.asyncio
async def test_plain_turn_is_bounded_too(make_orchestrator):
    gateway = ScriptedGateway(stream_delay=1.0)
    orchestrator = make_orchestrator(gateway, request_timeout=0.1)

    with pytest.raises(TurnTimeout):
        await orchestrator.run_direct(MESSAGES)

    fast = make_orchestrator(ScriptedGateway(), request_timeout=5.0)
    reply = await fast.run_direct(MESSAGES)
    assert reply.tool_names == []
    assert await _drain(reply) == sse_body(["Namaste", ", kisan ", "bhai."])


@pytest.mark.asyncio
async def test_turn_timeout(make_orchestrator, make_executor):
    gateway = ScriptedGateway(first_message={
        "role": "assistant", "content": None,
        "tool_calls": [tool_call("call_w", "get_weather", {"location": "Indore"})],
    })
    executor = make_executor(weather=FakeWeather(delay=1.0))
    orchestrator = make_orchestrator(gateway, executor=executor, request_timeout=0.1)

    with pytest.raises(TurnTimeout):
        await orchestrator.run(MESSAGES)
    assert gateway.stream_requests == []
