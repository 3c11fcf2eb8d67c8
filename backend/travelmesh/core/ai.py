import google.generativeai as genai
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ValidationError as SchemaError
from travelmesh.config import settings
from travelmesh.errors import ProviderError
from typing import Any, Optional, TypeVar
import asyncio
import base64
import json
import logging
import re

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRAVEL_TRANSCRIPTION_PROMPT = (
    "This is a travel planning conversation about destinations, hotels, flights, activities, and trip planning."
)

def strip_code_fences(text: str) -> str:
    text = (text or "").strip()
    text = re.sub(r'^```(?:json)?\s*', '', text)
    text = re.sub(r'\s*```$', '', text)
    return text.strip()

def parse_json_reply(text: str, schema: type[BaseModel], default: T) -> BaseModel | T:
    """
    Parse a model reply as JSON and validate it against `schema`.
    Anything unparseable or off-schema falls back to `default` instead of raising.
    """
    try:
        return schema.model_validate(json.loads(strip_code_fences(text)))
    except (json.JSONDecodeError, SchemaError, TypeError) as e:
        logger.warning(f"AI reply did not match {schema.__name__}, using default: {e}")
        return default


class AIClient:
    """
    Async access to the hosted models. Chat completions go to the configured
    AI_PROVIDER; transcription, speech and vision are OpenAI only.
    """

    def __init__(self, openai_api_key: str = "", google_api_key: str = "", provider: str = "openai"):
        self.provider = provider.lower()
        self.openai_client: Optional[AsyncOpenAI] = None
        self.gemini_model = None

        # 1. OpenAI Init
        if openai_api_key:
            self.openai_client = AsyncOpenAI(api_key=openai_api_key, timeout=settings.AI_TIMEOUT_SECONDS)

        # 2. Gemini Init
        if google_api_key:
            genai.configure(api_key=google_api_key)
            self.gemini_model = genai.GenerativeModel(settings.GEMINI_MODEL)

    def _openai(self) -> AsyncOpenAI:
        if not self.openai_client:
            raise ProviderError("openai", "OPENAI_API_KEY not configured")
        return self.openai_client

    async def complete(self, prompt: str, *, max_tokens: int = 1000, temperature: float = 0.5, json_mode: bool = True) -> str:
        if self.provider == "gemini":
            return await self._complete_with_gemini(prompt, max_tokens=max_tokens, temperature=temperature)
        return await self._complete_with_openai(prompt, max_tokens=max_tokens, temperature=temperature, json_mode=json_mode)

    async def _complete_with_openai(self, prompt: str, *, max_tokens: int, temperature: float, json_mode: bool) -> str:
        kwargs: dict = {
            "model": settings.OPENAI_CHAT_MODEL,
            "messages": [
                {"role": "system", "content": "You are a travel planning assistant. Reply with JSON only."},
                {"role": "user", "content": prompt}
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self._openai().chat.completions.create(**kwargs)
        except OpenAIError as e:
            raise ProviderError("openai", f"completion failed: {e}") from e
        return response.choices[0].message.content or ""

    async def _complete_with_gemini(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
        if not self.gemini_model:
            raise ProviderError("gemini", "GOOGLE_API_KEY not configured")
        try:
            response = await asyncio.wait_for(
                self.gemini_model.generate_content_async(
                    prompt,
                    generation_config={"max_output_tokens": max_tokens, "temperature": temperature},
                ),
                timeout=settings.AI_TIMEOUT_SECONDS,
            )
            return response.text
        except asyncio.TimeoutError as e:
            raise ProviderError("gemini", f"completion timed out after {settings.AI_TIMEOUT_SECONDS}s") from e
        except Exception as e:
            raise ProviderError("gemini", f"completion failed: {e}") from e

    async def transcribe(self, audio: bytes, filename: str = "audio.webm", language: str = "en") -> dict:
        """Whisper transcription in verbose_json form (text, language, duration, segments, words)."""
        try:
            transcription = await self._openai().audio.transcriptions.create(
                file=(filename, audio),
                model=settings.OPENAI_TRANSCRIBE_MODEL,
                language=language,
                response_format="verbose_json",
                prompt=TRAVEL_TRANSCRIPTION_PROMPT,
            )
        except OpenAIError as e:
            raise ProviderError("openai", f"transcription failed: {e}") from e
        return transcription.model_dump()

    async def synthesize_speech(self, text: str, voice: str = "alloy", speed: float = 1.0) -> bytes:
        try:
            response = await self._openai().audio.speech.create(
                model=settings.OPENAI_TTS_MODEL,
                voice=voice,
                input=text,
                speed=speed,
                response_format="mp3",
            )
        except OpenAIError as e:
            raise ProviderError("openai", f"speech synthesis failed: {e}") from e
        return response.content

    async def analyze_image(self, image: bytes, prompt: str, mime_type: str = "image/jpeg", max_tokens: int = 1500) -> str:
        data_url = f"data:{mime_type};base64,{base64.b64encode(image).decode()}"
        try:
            response = await self._openai().chat.completions.create(
                model=settings.OPENAI_VISION_MODEL,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": data_url, "detail": "high"}},
                    ],
                }],
                max_tokens=max_tokens,
                temperature=0.3,
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            raise ProviderError("openai", f"image analysis failed: {e}") from e
        return response.choices[0].message.content or ""


def build_ai_client() -> AIClient:
    return AIClient(
        openai_api_key=settings.OPENAI_API_KEY,
        google_api_key=settings.GOOGLE_API_KEY,
        provider=settings.AI_PROVIDER,
    )


def dump_for_prompt(value: Any) -> str:
    return json.dumps(value, default=str, ensure_ascii=False)
