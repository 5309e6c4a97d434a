"""AI assistant client — Gemini first, OpenAI as fallback.

Providers are tried in order, once each, and only when a key is
available for them.  The account's own key wins over the server key.

  no key at all      → AIFeatureLockedError (feature locked, HTTP 403)
  provider error     → logged, next provider, finally None

Helpers parse the model's JSON output after stripping Markdown fences;
unparseable output is treated like a provider error.
"""

import json
import logging
import re
from dataclasses import dataclass

import httpx
from pydantic import ValidationError

from app.config import Settings
from app.middleware.exceptions import AIFeatureLockedError
from app.schemas.ai import (
    DiscountRecommendation,
    ParsedInvoiceRequest,
    ParsedReceipt,
    PriceAnalysis,
    ReceiptImage,
)
from app.schemas.catalog import CatalogItemIn

logger = logging.getLogger("konsul.ai")

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


@dataclass
class AIKeys:
    """Keys supplied by the account (request headers); empty means "use the server key"."""
    gemini: str | None = None
    openai: str | None = None


def strip_fences(text: str | None) -> str:
    if not text:
        return ""
    return _FENCE_RE.sub("", text.strip()).strip()


def parse_json(text: str | None):
    """Decode model output, or None if it is not JSON."""
    cleaned = strip_fences(text)
    if not cleaned:
        return None
    try:
        return json.loads(cleaned)
    except ValueError:
        logger.warning("AI response is not valid JSON: %.80s", cleaned)
        return None


class AIClient:

    def __init__(
        self,
        gemini_api_key: str = "",
        openai_api_key: str = "",
        gemini_model: str = "gemini-2.5-flash",
        openai_model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.gemini_api_key = gemini_api_key
        self.openai_api_key = openai_api_key
        self.gemini_model = gemini_model
        self.openai_model = openai_model
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, s: Settings, transport: httpx.AsyncBaseTransport | None = None) -> "AIClient":
        return cls(
            gemini_api_key=s.gemini_api_key,
            openai_api_key=s.openai_api_key,
            gemini_model=s.gemini_model,
            openai_model=s.openai_model,
            timeout=s.ai_timeout_seconds,
            transport=transport,
        )

    def is_enabled(self, keys: AIKeys | None = None) -> bool:
        gemini, openai = self._resolve(keys)
        return bool(gemini or openai)

    def _resolve(self, keys: AIKeys | None) -> tuple[str, str]:
        keys = keys or AIKeys()
        return keys.gemini or self.gemini_api_key, keys.openai or self.openai_api_key

    # ── Providers ───────────────────────────────────────────

    async def _gemini(
        self,
        client: httpx.AsyncClient,
        key: str,
        prompt: str,
        json_mode: bool,
        image: ReceiptImage | None = None,
    ) -> str | None:
        parts: list[dict] = [{"text": prompt}]
        if image is not None:
            parts.insert(0, {"inlineData": {"mimeType": image.mime_type, "data": image.image_base64}})
        body: dict = {"contents": [{"parts": parts}]}
        if json_mode:
            body["generationConfig"] = {"responseMimeType": "application/json"}
        try:
            resp = await client.post(
                GEMINI_URL.format(model=self.gemini_model),
                headers={"x-goog-api-key": key},
                json=body,
            )
            resp.raise_for_status()
            return resp.json()["candidates"][0]["content"]["parts"][0]["text"]
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            logger.error(f"Gemini request failed: {type(e).__name__}: {e}")
            return None

    async def _openai(
        self,
        client: httpx.AsyncClient,
        key: str,
        prompt: str,
        json_mode: bool,
        image: ReceiptImage | None = None,
    ) -> str | None:
        content: str | list[dict] = prompt
        if image is not None:
            content = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {
                    "url": f"data:{image.mime_type};base64,{image.image_base64}",
                }},
            ]
        body: dict = {
            "model": self.openai_model,
            "messages": [{"role": "user", "content": content}],
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        try:
            resp = await client.post(
                OPENAI_URL,
                headers={"Authorization": f"Bearer {key}"},
                json=body,
            )
            resp.raise_for_status()
            return resp.json()["choices"][0]["message"]["content"]
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            logger.error(f"OpenAI request failed: {type(e).__name__}: {e}")
            return None

    async def generate(
        self,
        prompt: str,
        *,
        json_mode: bool = False,
        keys: AIKeys | None = None,
        image: ReceiptImage | None = None,
    ) -> str | None:
        """Text from the first provider that answers, or None.

        ``image`` is sent alongside the prompt to both providers.

        Raises:
            AIFeatureLockedError: no provider key is configured
        """
        if not self.is_enabled(keys):
            raise AIFeatureLockedError()
        gemini, openai = self._resolve(keys)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            if gemini:
                text = await self._gemini(client, gemini, prompt, json_mode, image)
                if text:
                    return text
                if openai:
                    logger.info("Falling back to OpenAI")
            if openai:
                return await self._openai(client, openai, prompt, json_mode, image)
        return None

    # ── Features ────────────────────────────────────────────

    async def parse_invoice_request(self, text: str, keys: AIKeys | None = None) -> ParsedInvoiceRequest | None:
        prompt = (
            "Extract an invoice or quote request from the text below. Reply with JSON "
            'having keys "client_name", "amount", "currency", "concept" and '
            '"detected_type" ("Invoice" or "Quote").\n\n'
            f"Text: {text}"
        )
        data = parse_json(await self.generate(prompt, json_mode=True, keys=keys))
        if not isinstance(data, dict):
            return None
        try:
            return ParsedInvoiceRequest.model_validate(data)
        except ValidationError:
            logger.warning("AI invoice request did not match the expected shape")
            return None

    async def recommend_discount(
        self,
        amount: float,
        client_name: str,
        keys: AIKeys | None = None,
    ) -> DiscountRecommendation | None:
        prompt = (
            f'Recommend a prudent discount percentage to close a sale of {amount:.2f} '
            f'with client "{client_name}". Below 500 suggest 0 or 5; larger deals may go '
            "up to 15. Favour profitability. Reply with JSON having keys "
            '"recommended_rate" (0-100) and "reasoning" (at most 15 words).'
        )
        data = parse_json(await self.generate(prompt, json_mode=True, keys=keys))
        if not isinstance(data, dict):
            return None
        try:
            return DiscountRecommendation.model_validate(data)
        except ValidationError:
            logger.warning("AI discount recommendation did not match the expected shape")
            return None

    async def suggest_catalog_items(self, business_description: str, keys: AIKeys | None = None) -> list[CatalogItemIn]:
        prompt = (
            "Suggest 3 to 5 products or services with realistic USD prices for this "
            f"business: {business_description}. Reply with a JSON array of objects "
            'having keys "name", "price" and "description".'
        )
        data = parse_json(await self.generate(prompt, json_mode=True, keys=keys))
        if not isinstance(data, list):
            return []

        items = []
        for entry in data:
            try:
                items.append(CatalogItemIn.model_validate(entry))
            except ValidationError:
                logger.warning("Dropping malformed catalog suggestion: %r", entry)
        return items

    async def analyze_price(
        self,
        item_name: str,
        country: str,
        keys: AIKeys | None = None,
    ) -> PriceAnalysis | None:
        prompt = (
            f'Analyze the market price for "{item_name}" in {country}. Reply with JSON '
            'having keys "min_price", "max_price", "avg_price", "currency" and '
            '"reasoning" (one or two sentences).'
        )
        data = parse_json(await self.generate(prompt, json_mode=True, keys=keys))
        if not isinstance(data, dict):
            return None
        try:
            analysis = PriceAnalysis.model_validate(data)
        except ValidationError:
            logger.warning("AI price analysis did not match the expected shape")
            return None
        if not analysis.min_price <= analysis.avg_price <= analysis.max_price:
            logger.warning("AI price analysis has an inconsistent range for %r", item_name)
            return None
        return analysis

    async def parse_receipt(self, image: ReceiptImage, keys: AIKeys | None = None) -> ParsedReceipt | None:
        """Read provider, total, date and concept off a receipt photo."""
        prompt = (
            "Act as a precise bookkeeping assistant and read this receipt. Reply with "
            'JSON having keys "provider_name" (the issuing business, without words like '
            '"Invoice" or "Receipt"), "amount" (final total paid), "currency", "date" '
            '(YYYY-MM-DD, or null) and "concept" (what was bought, briefly; do not '
            "repeat the provider name)."
        )
        data = parse_json(await self.generate(prompt, json_mode=True, keys=keys, image=image))
        if not isinstance(data, dict):
            return None
        try:
            return ParsedReceipt.model_validate(data)
        except ValidationError:
            logger.warning("AI receipt reading did not match the expected shape")
            return None

    async def enhance_description(
        self,
        name: str,
        description: str,
        fmt: str = "paragraph",
        keys: AIKeys | None = None,
    ) -> str:
        """Improved sales copy, or the original description if no provider answers."""
        prompt = (
            f'Improve and expand the sales description for the product "{name}". '
            f'Original description: "{description}". Format as {fmt}.'
        )
        text = await self.generate(prompt, keys=keys)
        return text.strip() if text else description
