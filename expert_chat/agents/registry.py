"""
Tool Registry

Declares the tools the expert chat advertises to the language model. Each
tool's parameters are a pydantic model; the JSON schema sent to the model
is derived from that model, so advertisement and validation cannot drift.
"""
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class ToolName(str, Enum):
    GET_WEATHER = "get_weather"
    GET_MARKET_PRICES = "get_market_prices"
    SEARCH_SCHEMES = "search_schemes"
    ANALYZE_CROP_ADVICE = "analyze_crop_advice"


class ToolError(Exception):
    pass


class UnknownTool(ToolError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class InvalidArguments(ToolError):
    def __init__(self, name: str, details: Any):
        super().__init__(f"Invalid arguments for {name}")
        self.name = name
        self.details = details


class ToolArgs(BaseModel):
    # strict: "12" is not a number and 12 is not a string
    model_config = ConfigDict(strict=True, extra="ignore")


class WeatherArgs(ToolArgs):
    location: str = Field(..., min_length=1, description="Location name (city, district, or state in India). Example: 'Indore, Madhya Pradesh'")
    lat: Optional[float] = Field(None, description="Latitude of the location (optional, will geocode if not provided)")
    lon: Optional[float] = Field(None, description="Longitude of the location (optional, will geocode if not provided)")


class MarketPriceArgs(ToolArgs):
    commodity: str = Field(..., min_length=1, description="Name of the crop/commodity. Examples: Wheat, Rice, Soybean, Cotton, Onion, Tomato")
    state: Optional[str] = Field(None, description="State name to filter mandis. Example: 'Madhya Pradesh'")
    mandi: Optional[str] = Field(None, description="Specific mandi name (optional)")


class SchemeSearchArgs(ToolArgs):
    query: str = Field(..., min_length=1, description="Search query - what type of scheme they're looking for. Examples: 'crop insurance', 'PM-KISAN', 'irrigation subsidy', 'tractor loan'")
    state: Optional[str] = Field(None, description="State to filter state-specific schemes (optional)")
    crop: Optional[str] = Field(None, description="Crop name to find crop-specific schemes (optional)")


class CropAdviceArgs(ToolArgs):
    crop: str = Field(..., min_length=1, description="Name of the crop. Examples: Wheat, Rice, Cotton, Soybean")
    stage: Optional[Literal["sowing", "vegetative", "flowering", "maturity", "harvest"]] = Field(
        None, description="Current growth stage")
    issue: Optional[str] = Field(None, description="Specific issue or question (optional). Example: 'yellow leaves', 'pest attack', 'irrigation timing'")
    location: Optional[str] = Field(None, description="Location for climate-specific advice (optional)")


ValidatedArgs = Union[WeatherArgs, MarketPriceArgs, SchemeSearchArgs, CropAdviceArgs]


def parameter_schema(model: Type[BaseModel]) -> Dict[str, Any]:
    """JSON schema for `model` in the plain form chat-completion tools expect."""
    schema = model.model_json_schema()
    properties: Dict[str, Any] = {}
    for name, prop in schema.get("properties", {}).items():
        prop = {k: v for k, v in prop.items() if k not in ("title", "default")}
        # Optional[X] is rendered as anyOf [X, null]; advertise X and rely on `required`
        variants = [v for v in prop.pop("anyOf", []) if v.get("type") != "null"]
        if variants:
            prop.update(variants[0])
        properties[name] = prop
    return {"type": "object", "properties": properties, "required": list(schema.get("required", []))}


@dataclass(frozen=True)
class ToolDefinition:
    name: ToolName
    description: str
    arguments_model: Type[ToolArgs]

    @property
    def parameter_schema(self) -> Dict[str, Any]:
        return parameter_schema(self.arguments_model)

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name.value,
                "description": self.description,
                "parameters": self.parameter_schema,
            },
        }


class ToolRegistry:
    def __init__(self):
        self._tools: Dict[ToolName, ToolDefinition] = {}

    def register(self, definition: ToolDefinition) -> None:
        if definition.name in self._tools:
            raise ValueError(f"tool already registered: {definition.name.value}")
        self._tools[definition.name] = definition

    def resolve(self, name: str) -> ToolName:
        try:
            tool = ToolName(name)
        except ValueError:
            raise UnknownTool(name)
        if tool not in self._tools:
            raise UnknownTool(name)
        return tool

    def get(self, name: str) -> ToolDefinition:
        return self._tools[self.resolve(name)]

    def list(self) -> List[ToolDefinition]:
        return list(self._tools.values())

    def to_openai_tools(self) -> List[Dict[str, Any]]:
        return [d.to_openai() for d in self._tools.values()]

    def validate(self, name: str, arguments: Union[str, Dict[str, Any], None]) -> ToolArgs:
        """Parse and check `arguments` (JSON text or dict) for tool `name`."""
        definition = self.get(name)
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except ValueError as e:
                raise InvalidArguments(name, f"arguments are not valid JSON: {e}")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise InvalidArguments(name, "arguments must be a JSON object")
        try:
            return definition.arguments_model.model_validate(arguments)
        except ValidationError as e:
            raise InvalidArguments(name, e.errors(include_url=False, include_context=False, include_input=False))


def default_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(ToolDefinition(
        ToolName.GET_WEATHER,
        "Get current weather conditions and 7-day forecast for a location in India. Use this when farmers ask about weather, rainfall, temperature, or need planning advice.",
        WeatherArgs,
    ))
    registry.register(ToolDefinition(
        ToolName.GET_MARKET_PRICES,
        "Get current mandi (market) prices for agricultural commodities. Use when farmers ask about selling crops, price trends, or which mandi to go to.",
        MarketPriceArgs,
    ))
    registry.register(ToolDefinition(
        ToolName.SEARCH_SCHEMES,
        "Search for government agricultural schemes, subsidies, and programs. Use when farmers ask about financial help, loans, insurance, or government benefits.",
        SchemeSearchArgs,
    ))
    registry.register(ToolDefinition(
        ToolName.ANALYZE_CROP_ADVICE,
        "Get tailored crop management advice. Use when farmers ask about sowing, irrigation, fertilizers, pest control, or general crop guidance.",
        CropAdviceArgs,
    ))
    return registry
