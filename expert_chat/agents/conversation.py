"""
Conversation assembly for the expert chat endpoints.

Incoming bodies are validated here, before any model call: 1-50 messages,
bounded content length, known roles, and every `tool` message answering a
tool call issued earlier in the same history. The validated history is
then prefixed with the advisor's system prompt.
"""
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError, model_validator

from .. import config

SYSTEM_PROMPT = """You are Kisan Mitra's Expert Agricultural Advisor - an AI agent with access to real tools to help Indian farmers.

You have access to these tools to provide accurate, real-time information:

1. **get_weather** - Get current weather and forecast for any location
2. **get_market_prices** - Look up current mandi prices for crops
3. **search_schemes** - Find government agricultural schemes
4. **analyze_crop_advice** - Provide crop-specific guidance based on conditions

**Guidelines:**
- Use tools proactively when relevant - don't just give generic advice
- If a farmer asks about weather, ALWAYS use the weather tool
- If they mention selling crops or prices, use the market prices tool
- If they ask about subsidies or government help, search schemes
- For crop questions, provide tailored advice using analyze_crop_advice
- Consider local seasons (Kharif, Rabi, Zaid) and regional variations
- Use simple language appropriate for farmers
- When discussing pesticides/chemicals, always mention safety precautions
- If unsure, recommend consulting local Krishi Vigyan Kendra (KVK)
- Be empathetic to farmers' challenges

Always respond in the same language the farmer uses (Hindi, English, or regional languages)."""

PLAIN_SYSTEM_PROMPT = """You are Kisan Mitra's Expert Agricultural Advisor - an AI assistant specialized in helping Indian farmers with:

1. **Crop Management**: Sowing schedules, irrigation, fertilizers, pest control, disease identification
2. **Weather Guidance**: Interpreting weather forecasts, planning farm activities around weather
3. **Market Insights**: Best times to sell, price trends, mandi selection
4. **Government Schemes**: PM-KISAN, crop insurance, subsidies, how to apply
5. **Sustainable Farming**: Organic methods, soil health, water conservation

Guidelines:
- Give practical, actionable advice specific to Indian agriculture
- Consider local seasons (Kharif, Rabi, Zaid) and regional variations
- Use simple language, avoid jargon
- When discussing chemicals/pesticides, always mention safety precautions
- If unsure, recommend consulting local Krishi Vigyan Kendra (KVK)
- Be empathetic to farmers' challenges

Always respond in the same language the farmer uses (Hindi, English, or regional languages)."""


class ConversationRejected(ValueError):
    """The request body cannot be turned into a conversation turn (HTTP 400)."""


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system", "tool"]
    content: str = Field(..., max_length=config.MAX_MESSAGE_CHARS)
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(..., min_length=1, max_length=config.MAX_MESSAGES)
    conversationId: Optional[UUID] = None

    @model_validator(mode="after")
    def _tool_messages_answer_earlier_calls(self):
        issued = set()
        for i, m in enumerate(self.messages):
            if m.role == "assistant" and m.tool_calls:
                issued.update(tc.get("id") for tc in m.tool_calls if tc.get("id"))
            if m.role == "tool" and (not m.tool_call_id or m.tool_call_id not in issued):
                raise ValueError(f"messages[{i}]: tool message does not answer an earlier assistant tool call")
        return self


class PlainChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = Field(..., min_length=1, max_length=config.MAX_PLAIN_CHAT_CHARS)


class PlainChatRequest(BaseModel):
    messages: List[PlainChatMessage] = Field(..., min_length=1, max_length=config.MAX_MESSAGES)
    conversationId: Optional[UUID] = None


RequestT = TypeVar("RequestT", bound=BaseModel)


def parse_chat_request(payload: Any, model: Type[RequestT] = ChatRequest) -> RequestT:
    if not isinstance(payload, dict):
        raise ConversationRejected("request body must be a JSON object")
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise ConversationRejected(str(e)) from e


def assemble_messages(request: BaseModel, system_prompt: str = SYSTEM_PROMPT) -> List[Dict[str, Any]]:
    """System prompt followed by the caller's history, optional fields only when set."""
    out: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for m in request.messages:
        out.append(m.model_dump(exclude_none=True))
    return out
