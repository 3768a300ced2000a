"""天气查询 Agent。

处理流程：
1. can_handle 通过中英文关键词判断是否是天气问题。
2. execute 先让模型从问题中提取英文城市名（关闭 Agent，避免递归）。
3. 调用 OpenWeatherMap 当前天气接口，并格式化为文本答案。
"""

import re
from typing import Any, Dict, Optional, Protocol

import httpx

from ollama_core.config.settings import settings
from ollama_core.domain.exceptions import NetworkError, ValidationError
from ollama_core.domain.models import ChatRequest, ChatResponse, Message


WEATHER_PATTERN = re.compile(r"weather|temperature|天气|气温|温度|下雨|晴|阴", re.IGNORECASE)
PUNCTUATION = re.compile(r"[.,!?，。！？]")

NO_CITY_REPLY = (
    "Sorry, I couldn't identify the city you want to query. "
    "Please specify a city name, for example: 'What's the weather in Beijing?'"
)
LOOKUP_FAILED_REPLY = "Sorry, failed to get weather information. Please check if the city name is correct."

EXTRACTOR_SYSTEM_PROMPT = (
    "You are a city name extractor. Extract city names in Chinese or English, "
    "then convert to English names."
)
EXTRACTOR_PROMPT = (
    "You are a city name extractor. Follow these steps:\n"
    "1. Extract the city name from the following text (can be in Chinese or English)\n"
    "2. If no city name is found, return null\n"
    "3. If the city name is in Chinese, convert it to its English name\n"
    "4. Return only the English city name, without any explanation\n\n"
    "Text: {text}"
)


class ChatClient(Protocol):
    def chat(self, request: ChatRequest) -> ChatResponse:
        ...


class WeatherAgent:
    """基于 OpenWeatherMap 的天气 Agent。"""

    name = "weather"
    description = "查询天气信息，支持中英文城市名（Query weather information, supporting both Chinese and English city names）"

    def __init__(
        self,
        client: ChatClient,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        cfg=settings,
    ):
        self._client = client
        self._api_key = api_key or getattr(cfg, "openweathermap_api_key", None)
        if not self._api_key:
            raise ValidationError(
                "OpenWeatherMap API key not found. Set OPENWEATHERMAP_API_KEY "
                "or openweathermap_api_key in config.yaml",
                code="MISSING_API_KEY",
            )
        self._model = model or cfg.weather_model
        self._base_url = cfg.openweathermap_base_url.rstrip("/")
        self._timeout = cfg.read_timeout

    def can_handle(self, text: str) -> bool:
        return bool(WEATHER_PATTERN.search(text or ""))

    def execute(self, text: str) -> str:
        city = self.extract_city(text)
        if city is None:
            return NO_CITY_REPLY

        try:
            with httpx.Client(timeout=self._timeout) as client:
                resp = client.get(
                    f"{self._base_url}/weather",
                    params={"q": city, "appid": self._api_key, "units": "metric", "lang": "zh_cn"},
                )
        except httpx.RequestError as e:
            raise NetworkError(f"Weather lookup failed: {e}", city=city) from e
        if resp.status_code >= 400:
            return LOOKUP_FAILED_REPLY
        return self.format_weather(resp.json())

    def extract_city(self, text: str) -> Optional[str]:
        """让模型提取英文城市名，无法识别时返回 None。"""

        request = ChatRequest(
            model=self._model,
            messages=[
                Message(role="system", content=EXTRACTOR_SYSTEM_PROMPT),
                Message(role="user", content=EXTRACTOR_PROMPT.format(text=text)),
            ],
            use_agents=False,
        )
        answer = (self._client.chat(request).message.content or "").strip()
        if not answer or answer.lower() == "null":
            return None
        answer = PUNCTUATION.sub("", answer).strip()
        return answer or None

    @staticmethod
    def format_weather(data: Dict[str, Any]) -> str:
        main = data.get("main") or {}
        wind = data.get("wind") or {}
        weather = data.get("weather") or [{}]
        return (
            f"Weather in {data.get('name', '')}:\n"
            f"Temperature: {float(main.get('temp', 0.0)):.1f}°C\n"
            f"Humidity: {int(main.get('humidity', 0))}%\n"
            f"Conditions: {weather[0].get('description', 'unknown')}\n"
            f"Wind Speed: {float(wind.get('speed', 0.0)):.1f} m/s"
        )
