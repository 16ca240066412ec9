from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from pydantic import AliasChoices, BaseModel, Field

from aria.errors import ToolErrorKind
from aria.tools.base import OutputItem, OutputKind, ToolContext, ToolResult, ToolSpec
from aria.telemetry.logging import get_logger

LOGGER = get_logger(__name__)

GEOCODE_URL = "https://geocoding-api.open-meteo.com/v1/search"
FORECAST_URL = "https://api.open-meteo.com/v1/forecast"

PLACE_TIMEZONES: dict[str, str] = {
    "new york": "America/New_York",
    "nyc": "America/New_York",
    "boston": "America/New_York",
    "chicago": "America/Chicago",
    "denver": "America/Denver",
    "los angeles": "America/Los_Angeles",
    "la": "America/Los_Angeles",
    "san francisco": "America/Los_Angeles",
    "seattle": "America/Los_Angeles",
    "toronto": "America/Toronto",
    "mexico city": "America/Mexico_City",
    "sao paulo": "America/Sao_Paulo",
    "london": "Europe/London",
    "dublin": "Europe/Dublin",
    "paris": "Europe/Paris",
    "berlin": "Europe/Berlin",
    "madrid": "Europe/Madrid",
    "rome": "Europe/Rome",
    "amsterdam": "Europe/Amsterdam",
    "moscow": "Europe/Moscow",
    "dubai": "Asia/Dubai",
    "mumbai": "Asia/Kolkata",
    "delhi": "Asia/Kolkata",
    "india": "Asia/Kolkata",
    "singapore": "Asia/Singapore",
    "hong kong": "Asia/Hong_Kong",
    "shanghai": "Asia/Shanghai",
    "beijing": "Asia/Shanghai",
    "tokyo": "Asia/Tokyo",
    "seoul": "Asia/Seoul",
    "sydney": "Australia/Sydney",
    "melbourne": "Australia/Melbourne",
    "auckland": "Pacific/Auckland",
}

WEATHER_CODES: dict[int, str] = {
    0: "Clear sky",
    1: "Partly cloudy",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Foggy",
    48: "Foggy",
    51: "Drizzle",
    53: "Drizzle",
    55: "Drizzle",
    61: "Rain",
    63: "Rain",
    65: "Heavy rain",
    71: "Snow",
    73: "Snow",
    75: "Heavy snow",
    80: "Rain showers",
    81: "Rain showers",
    82: "Violent rain showers",
    95: "Thunderstorm",
    96: "Thunderstorm with hail",
    99: "Thunderstorm with hail",
}


class TimeArgs(BaseModel):
    place: str | None = Field(default=None, validation_alias=AliasChoices("place", "city", "location"))
    timezone: str | None = Field(default=None, validation_alias=AliasChoices("timezone", "tz"))


class WeatherArgs(BaseModel):
    place: str | None = Field(default=None, validation_alias=AliasChoices("place", "city", "location", "q"))
    days: int = Field(default=1, ge=1, le=7)


class NewsArgs(BaseModel):
    topic: str | None = Field(default=None, validation_alias=AliasChoices("topic", "query", "q", "category"))
    limit: int = Field(default=5, ge=1, le=10)


def resolve_timezone(place: str | None, tz_name: str | None) -> ZoneInfo | None:
    for candidate in (tz_name, PLACE_TIMEZONES.get((place or "").strip().lower())):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            continue
    return None


def get_time(args: TimeArgs, ctx: ToolContext) -> ToolResult:
    zone = resolve_timezone(args.place, args.timezone)
    if zone is None and (args.place or args.timezone):
        label = args.timezone or args.place
        return ToolResult.failure(
            "get_time",
            f"Unknown timezone or place '{label}'",
            ToolErrorKind.INVALID_ARGUMENTS,
        )
    clock = ctx.extras.get("now")
    now = clock() if callable(clock) else datetime.now(timezone.utc)
    local = now.astimezone(zone) if zone is not None else now.astimezone()
    time_str = local.strftime("%I:%M %p").lstrip("0")
    date_str = local.strftime("%A, %B %d, %Y")
    location = args.place or (zone.key if zone is not None else "your timezone")
    return ToolResult.ok(
        "get_time",
        spoken_text=f"It's {time_str} in {location}.",
        output=OutputItem(kind=OutputKind.MARKDOWN, payload=f"**{time_str}**\n{date_str}\n*{location}*"),
    )


async def _get_json(ctx: ToolContext, url: str, *, params: dict[str, Any], headers: dict[str, str] | None = None) -> Any:
    client: httpx.AsyncClient | None = ctx.http
    if client is not None:
        response = await client.get(url, params=params, headers=headers)
        response.raise_for_status()
        return response.json()
    async with httpx.AsyncClient(timeout=10.0) as owned:
        response = await owned.get(url, params=params, headers=headers)
        response.raise_for_status()
        return response.json()


async def get_weather(args: WeatherArgs, ctx: ToolContext) -> ToolResult:
    place = args.place or getattr(ctx.settings, "default_city", None)
    if not place:
        return ToolResult.failure("get_weather", "No location provided. Use the place argument.", ToolErrorKind.INVALID_ARGUMENTS)
    try:
        geo = await _get_json(ctx, GEOCODE_URL, params={"name": place, "count": 1})
        results = (geo or {}).get("results") or []
        if not results:
            return ToolResult.failure("get_weather", f"Could not find location: {place}")
        first = results[0]
        forecast = await _get_json(
            ctx,
            FORECAST_URL,
            params={
                "latitude": first["latitude"],
                "longitude": first["longitude"],
                "current": "temperature_2m,relative_humidity_2m,precipitation,wind_speed_10m,weather_code",
                "daily": "temperature_2m_max,temperature_2m_min,weather_code",
                "forecast_days": args.days,
                "timezone": "auto",
            },
        )
    except httpx.HTTPError as exc:
        LOGGER.warning("tools.weather.http_error", place=place, error=str(exc))
        return ToolResult.failure("get_weather", f"Weather fetch failed: {exc.__class__.__name__}")

    current = (forecast or {}).get("current")
    if not current:
        return ToolResult.failure("get_weather", "Weather data unavailable")
    name = first.get("name", place)
    temp = round(float(current.get("temperature_2m", 0.0)))
    condition = WEATHER_CODES.get(int(current.get("weather_code", -1)), "Unknown conditions")
    lines = [
        f"**{name} weather**",
        f"{temp}°C | {condition}",
        f"Humidity: {current.get('relative_humidity_2m', '?')}% | Precip: {current.get('precipitation', 0)}mm",
        f"Wind: {round(float(current.get('wind_speed_10m', 0.0)))} km/h",
    ]
    daily = forecast.get("daily") or {}
    highs = daily.get("temperature_2m_max") or []
    lows = daily.get("temperature_2m_min") or []
    if args.days > 1 and highs and lows:
        lines.append("")
        lines.append("**Forecast:**")
        for idx, (low, high) in enumerate(zip(lows, highs)):
            lines.append(f"Day {idx + 1}: {round(low)}°–{round(high)}°C")
    return ToolResult.ok(
        "get_weather",
        spoken_text=f"It's currently {temp} degrees and {condition.lower()} in {name}.",
        output=OutputItem(kind=OutputKind.MARKDOWN, payload="\n".join(lines)),
    )


async def fetch_news(args: NewsArgs, ctx: ToolContext) -> ToolResult:
    api_key = getattr(ctx.settings, "news_api_key", None)
    if not api_key:
        return ToolResult.failure("news.fetch", "News API key is not configured", ToolErrorKind.PERMISSION_DENIED)
    base_url = getattr(ctx.settings, "news_api_url", "https://newsapi.org/v2").rstrip("/")
    params: dict[str, Any] = {"language": "en", "pageSize": args.limit}
    if args.topic:
        params["q"] = args.topic
    else:
        params["country"] = "us"
    try:
        payload = await _get_json(ctx, f"{base_url}/top-headlines", params=params, headers={"X-Api-Key": api_key})
    except httpx.HTTPError as exc:
        LOGGER.warning("tools.news.http_error", error=str(exc))
        return ToolResult.failure("news.fetch", f"News fetch failed: {exc.__class__.__name__}")

    articles = [item for item in (payload or {}).get("articles") or [] if item.get("title")][: args.limit]
    if not articles:
        subject = f" about {args.topic}" if args.topic else ""
        return ToolResult.ok("news.fetch", spoken_text=f"I couldn't find any headlines{subject} right now.")
    lines = ["**Top headlines**"]
    for item in articles:
        source = (item.get("source") or {}).get("name")
        suffix = f" ({source})" if source else ""
        lines.append(f"- {item['title']}{suffix}")
    return ToolResult.ok(
        "news.fetch",
        spoken_text=f"Here's the top headline: {articles[0]['title']}.",
        output=OutputItem(kind=OutputKind.MARKDOWN, payload="\n".join(lines)),
    )


def info_tools(context: ToolContext, timeout_s: float = 8.0) -> list[ToolSpec]:
    return [
        ToolSpec(
            name="get_time",
            description="Get the current time, optionally for a timezone or city",
            parameter_description="Args: timezone (IANA ID), place (city name)",
            request_model=TimeArgs,
            handler=get_time,
            context=context,
        ),
        ToolSpec(
            name="get_weather",
            description="Get current weather and forecast for a location",
            parameter_description="Args: place (required), days (1-7)",
            request_model=WeatherArgs,
            handler=get_weather,
            timeout_s=timeout_s,
            context=context,
        ),
        ToolSpec(
            name="news.fetch",
            description="Fetch the latest news headlines",
            parameter_description="Args: topic (optional), limit (1-10)",
            request_model=NewsArgs,
            handler=fetch_news,
            timeout_s=timeout_s,
            context=context,
        ),
    ]


__all__ = ["info_tools", "resolve_timezone", "TimeArgs", "WeatherArgs", "NewsArgs", "PLACE_TIMEZONES"]
