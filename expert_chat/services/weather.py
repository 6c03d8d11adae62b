import asyncio
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import httpx

from .. import config

logger = logging.getLogger(__name__)

OWM_BASE = "https://api.openweathermap.org/data/2.5"
OPEN_METEO_URL = "https://api.open-meteo.com/v1/forecast"

HEAT_THRESHOLD_C = 35
FROST_THRESHOLD_C = 10

# WMO weather codes returned by Open-Meteo
WMO_DESCRIPTIONS = {
    0: "clear sky", 1: "mainly clear", 2: "partly cloudy", 3: "overcast",
    45: "fog", 48: "depositing rime fog",
    51: "light drizzle", 53: "drizzle", 55: "dense drizzle",
    61: "slight rain", 63: "rain", 65: "heavy rain",
    71: "slight snow", 73: "snow", 75: "heavy snow",
    80: "rain showers", 81: "heavy rain showers", 82: "violent rain showers",
    95: "thunderstorm", 96: "thunderstorm with hail", 99: "thunderstorm with heavy hail",
}


class WeatherServiceError(Exception):
    pass


def map_weather_condition(main: str) -> str:
    m = (main or "").lower()
    if "thunder" in m or "storm" in m:
        return "stormy"
    if "rain" in m or "drizzle" in m or "shower" in m:
        return "rainy"
    if any(k in m for k in ("cloud", "overcast", "mist", "fog", "haze")):
        return "cloudy"
    return "sunny"


def farming_advisory(temp: Optional[float]) -> str:
    if temp is not None and temp > HEAT_THRESHOLD_C:
        return "⚠️ High temperature alert - avoid mid-day field work, ensure adequate irrigation"
    if temp is not None and temp < FROST_THRESHOLD_C:
        return "⚠️ Cold weather - protect young crops from frost"
    return "Weather conditions are suitable for regular farm activities"


def _format_hour(moment: datetime) -> str:
    hour12 = moment.hour % 12 or 12
    return f"{hour12} {'PM' if moment.hour >= 12 else 'AM'}"


def _format_day(day: date) -> Dict[str, str]:
    label = "Today" if day == date.today() else day.strftime("%a")
    return {"day": label, "date": f"{day.strftime('%b')} {day.day}"}


def mock_weather(location_name: str) -> Dict[str, Any]:
    """Fixed payload used while the OpenWeatherMap key is rejected (401)."""
    now = datetime.now().timestamp()
    hourly = [
        {"time": _format_hour(datetime.fromtimestamp(now + h * 3600)), "temp": t, "condition": c, "rainChance": r}
        for h, t, c, r in [
            (0, 24, "sunny", 0), (3, 28, "sunny", 5), (6, 32, "sunny", 10),
            (9, 34, "cloudy", 25), (12, 30, "cloudy", 35), (15, 27, "rainy", 60),
        ]
    ]
    weekly = []
    for d, cond, high, low, rain, hum in [
        (0, "sunny", 34, 24, 10, 65), (1, "cloudy", 32, 23, 30, 70), (2, "rainy", 28, 22, 80, 85),
        (3, "rainy", 27, 21, 75, 82), (4, "cloudy", 29, 22, 40, 72), (5, "sunny", 31, 23, 15, 65),
        (6, "sunny", 33, 24, 5, 60),
    ]:
        day = datetime.fromtimestamp(now + d * 86400).date()
        weekly.append({
            **_format_day(day),
            "condition": cond, "high": high, "low": low, "rainChance": rain,
            "humidity": hum, "rainfall": 12 if rain >= 60 else 0,
        })
    return {
        "location": location_name,
        "current": {
            "temp": 32, "feelsLike": 35, "humidity": 65, "pressure": 1015, "windSpeed": 15,
            "condition": "sunny", "description": "mock data (API key not active)", "rainfall": 12,
        },
        "hourly": hourly,
        "weekly": weekly,
        "lastUpdated": datetime.utcnow().isoformat() + "Z",
        "meta": {
            "isMock": True,
            "warning": "OpenWeatherMap returned 401 (invalid key or not activated yet). Showing mock weather until the key becomes active.",
        },
    }


def normalize_openweathermap(location_name: str, current: Dict[str, Any], forecast: Dict[str, Any]) -> Dict[str, Any]:
    entries = forecast.get("list") or []

    hourly = []
    for item in entries[:8]:
        hourly.append({
            "time": _format_hour(datetime.fromtimestamp(item["dt"])),
            "temp": round(item["main"]["temp"]),
            "condition": map_weather_condition(item["weather"][0]["main"]),
            "rainChance": round((item.get("pop") or 0) * 100),
        })

    # group 3-hourly entries by calendar day
    days: Dict[date, Dict[str, Any]] = {}
    for item in entries:
        key = datetime.fromtimestamp(item["dt"]).date()
        rain = (item.get("rain") or {}).get("3h", 0)
        if key not in days:
            days[key] = {
                "temps": [item["main"]["temp"]],
                "humidity": item["main"]["humidity"],
                "pop": item.get("pop") or 0,
                "weather": item["weather"][0]["main"],
                "rain": rain,
            }
        else:
            existing = days[key]
            existing["temps"].append(item["main"]["temp"])
            existing["pop"] = max(existing["pop"], item.get("pop") or 0)
            existing["rain"] += rain

    today = date.today()
    if today not in days:
        days[today] = {
            "temps": [current["main"]["temp"]],
            "humidity": current["main"]["humidity"],
            "pop": 0,
            "weather": current["weather"][0]["main"],
            "rain": (current.get("rain") or {}).get("1h", 0),
        }

    weekly = []
    for key in sorted(days)[:7]:
        d = days[key]
        weekly.append({
            **_format_day(key),
            "condition": map_weather_condition(d["weather"]),
            "high": round(max(d["temps"])),
            "low": round(min(d["temps"])),
            "rainChance": round(d["pop"] * 100),
            "humidity": d["humidity"],
            "rainfall": round(d["rain"]),
        })

    return {
        "location": location_name,
        "current": {
            "temp": round(current["main"]["temp"]),
            "feelsLike": round(current["main"]["feels_like"]),
            "humidity": current["main"]["humidity"],
            "pressure": current["main"]["pressure"],
            "windSpeed": round(current["wind"]["speed"] * 3.6),
            "condition": map_weather_condition(current["weather"][0]["main"]),
            "description": current["weather"][0]["description"],
            "rainfall": (current.get("rain") or {}).get("1h", 0),
        },
        "hourly": hourly,
        "weekly": weekly,
        "lastUpdated": datetime.utcnow().isoformat() + "Z",
        "meta": {"isMock": False, "source": "openweathermap"},
    }


def _wmo_condition(code: Optional[int]) -> str:
    return map_weather_condition(WMO_DESCRIPTIONS.get(code or 0, ""))


def normalize_open_meteo(location_name: str, raw: Dict[str, Any]) -> Dict[str, Any]:
    cur = raw.get("current") or {}
    code = cur.get("weather_code")

    hourly = []
    h = raw.get("hourly") or {}
    htimes = h.get("time") or []
    cur_time = cur.get("time")
    start = htimes.index(cur_time) if cur_time in htimes else 0
    for i in range(start, min(start + 24, len(htimes)), 3):
        hourly.append({
            "time": _format_hour(datetime.fromisoformat(htimes[i])),
            "temp": round(h["temperature_2m"][i]),
            "condition": _wmo_condition(h["weather_code"][i]),
            "rainChance": round(h["precipitation_probability"][i] or 0),
        })

    weekly = []
    d = raw.get("daily") or {}
    for i, day in enumerate((d.get("time") or [])[:7]):
        rain_chance = d["precipitation_probability_max"][i] or 0
        weekly.append({
            **_format_day(date.fromisoformat(day)),
            "condition": _wmo_condition(d["weather_code"][i]),
            "high": round(d["temperature_2m_max"][i]),
            "low": round(d["temperature_2m_min"][i]),
            "rainChance": round(rain_chance),
            "humidity": cur.get("relative_humidity_2m"),
            "rainfall": round(d["precipitation_sum"][i] or 0),
        })

    return {
        "location": location_name,
        "current": {
            "temp": round(cur["temperature_2m"]),
            "feelsLike": round(cur.get("apparent_temperature", cur["temperature_2m"])),
            "humidity": cur.get("relative_humidity_2m"),
            "pressure": round(cur.get("surface_pressure") or 0),
            "windSpeed": round(cur.get("wind_speed_10m") or 0),
            "condition": _wmo_condition(code),
            "description": WMO_DESCRIPTIONS.get(code or 0, ""),
            "rainfall": cur.get("precipitation") or 0,
        },
        "hourly": hourly,
        "weekly": weekly,
        "lastUpdated": datetime.utcnow().isoformat() + "Z",
        "meta": {"isMock": False, "source": "open-meteo"},
    }


class WeatherClient:
    """Current conditions plus a short forecast for a coordinate.

    Uses OpenWeatherMap when an API key is configured and the keyless
    Open-Meteo API otherwise. Raises `WeatherServiceError` on failure.
    """

    def __init__(self, api_key: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = config.OPENWEATHERMAP_API_KEY if api_key is None else api_key
        self.timeout = timeout or config.WEATHER_TIMEOUT_SECONDS
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def fetch(self, lat: float, lon: float, location_name: str) -> Dict[str, Any]:
        logger.info("[WeatherClient.fetch] %s (%s, %s)", location_name, lat, lon)
        try:
            if self.api_key:
                return await self._fetch_openweathermap(lat, lon, location_name)
            return await self._fetch_open_meteo(lat, lon, location_name)
        except WeatherServiceError:
            raise
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            raise WeatherServiceError(f"Weather API error: {e}") from e

    async def _fetch_openweathermap(self, lat: float, lon: float, location_name: str) -> Dict[str, Any]:
        params = {"lat": lat, "lon": lon, "units": "metric", "appid": self.api_key}
        async with self._client() as client:
            current_res, forecast_res = await asyncio.gather(
                client.get(f"{OWM_BASE}/weather", params=params),
                client.get(f"{OWM_BASE}/forecast", params=params),
            )

        # key not active yet: keep the app usable with a marked mock payload
        if current_res.status_code == 401 or forecast_res.status_code == 401:
            logger.error("[WeatherClient] OpenWeatherMap 401. current=%s forecast=%s",
                         current_res.text[:200], forecast_res.text[:200])
            return mock_weather(location_name)

        for label, res in (("Weather", current_res), ("Forecast", forecast_res)):
            if not res.is_success:
                logger.error("[WeatherClient] %s API error [%s]: %s", label, res.status_code, res.text[:300])
                raise WeatherServiceError(f"{label} API error: {res.status_code}")

        return normalize_openweathermap(location_name, current_res.json(), forecast_res.json())

    async def _fetch_open_meteo(self, lat: float, lon: float, location_name: str) -> Dict[str, Any]:
        params = {
            "latitude": lat,
            "longitude": lon,
            "current": "temperature_2m,apparent_temperature,relative_humidity_2m,surface_pressure,"
                       "wind_speed_10m,weather_code,precipitation",
            "hourly": "temperature_2m,precipitation_probability,weather_code",
            "daily": "weather_code,temperature_2m_max,temperature_2m_min,precipitation_probability_max,precipitation_sum",
            "timezone": "auto",
            "forecast_days": 7,
        }
        async with self._client() as client:
            resp = await client.get(OPEN_METEO_URL, params=params)
        if not resp.is_success:
            logger.error("[WeatherClient] Open-Meteo error [%s]: %s", resp.status_code, resp.text[:300])
            raise WeatherServiceError(f"Weather API error: {resp.status_code}")
        return normalize_open_meteo(location_name, resp.json())


def summarize_for_chat(data: Dict[str, Any]) -> Dict[str, Any]:
    """Compact, unit-labelled view of a weather document for the language model."""
    cur = data["current"]
    forecast: List[Dict[str, Any]] = []
    for day in (data.get("weekly") or [])[:5]:
        forecast.append({
            "day": day["day"],
            "date": day["date"],
            "high": f"{day['high']}°C",
            "low": f"{day['low']}°C",
            "condition": day["condition"],
            "rain_chance": f"{day['rainChance']}%",
        })
    return {
        "location": data.get("location"),
        "current": {
            "temperature": f"{cur['temp']}°C",
            "feels_like": f"{cur['feelsLike']}°C",
            "humidity": f"{cur['humidity']}%",
            "condition": cur["condition"],
            "description": cur["description"],
            "wind_speed": f"{cur['windSpeed']} km/h",
        },
        "forecast": forecast,
        "farming_advisory": farming_advisory(cur.get("temp")),
    }
