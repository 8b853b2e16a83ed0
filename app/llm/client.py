"""
LLM Client
==========
Asynchronous client wrapper for the Google Gemini REST API.

Single Call:
    generate(prompt, model) issues ONE generateContent request and returns the
    first candidate's text ("" when the reply carries none). Every failure is
    raised as ProviderError:
        - HTTP error status  → status + provider message (error.message / message / body)
        - transport fault    → status None + exception text

Fallback Cascade:
    invoke(prompt, candidates) walks the candidate list strictly in order.
        - success                 → stop, return (text, model actually used)
        - model unavailable (404 / "not found" / "not supported")
                                  → log, try the next candidate immediately
        - any other failure       → abort, propagate
        - list exhausted          → propagate the last error
    No retry of the same candidate and no delay between candidates.
    Callers must read the returned model id; it is not always the preferred one.
"""
import logging
from typing import List, Optional, Tuple

import httpx

from app.core.config import GEMINI_API_KEY, GEMINI_BASE_URL, MODEL_TIMEOUT_SECONDS
from app.llm.errors import MissingAPIKeyError, ProviderError
from app.llm.router import is_model_unavailable

logger = logging.getLogger(__name__)


GENERATION_CONFIG = {
    "temperature": 0.2,
    "maxOutputTokens": 4096,
    "responseMimeType": "application/json",
}


def extract_candidate_text(data: object) -> str:
    """Return candidates[0].content.parts[0].text from a Gemini reply, or ""."""
    try:
        candidates = data.get("candidates", [])
        if candidates:
            parts = candidates[0].get("content", {}).get("parts", [])
            if parts:
                text = parts[0].get("text", "")
                return text if isinstance(text, str) else ""
    except (AttributeError, IndexError, KeyError, TypeError):
        pass
    return ""


def provider_error_message(response: httpx.Response) -> str:
    """Best human-readable error message from a failed provider response."""
    try:
        data = response.json()
    except ValueError:
        data = None

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if data.get("message"):
            return str(data["message"])
    if response.text:
        return response.text
    return f"HTTP {response.status_code}"


class GeminiClient:
    """
    Async HTTP client for Gemini generateContent calls.

    Usage:
        client = GeminiClient()
        text, model = await client.invoke(prompt, ["gemini-pro", "gemini-1.5-flash"])
        await client.close()
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else GEMINI_API_KEY
        self.base_url = (base_url or GEMINI_BASE_URL).rstrip("/")
        self.timeout = timeout or MODEL_TIMEOUT_SECONDS
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def _get_http(self) -> httpx.AsyncClient:
        """Lazy-initialise the HTTP client."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._http

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    # -------------------------------------------------------------------
    # Single call
    # -------------------------------------------------------------------
    async def generate(self, prompt: str, model: str) -> str:
        """
        Send one prompt to one model.

        Raises
        ------
        MissingAPIKeyError
            If no API key is configured.
        ProviderError
            On any HTTP error status or transport fault.
        """
        if not self.api_key:
            raise MissingAPIKeyError("GEMINI_API_KEY is missing")

        http = await self._get_http()
        url = f"{self.base_url}/models/{model}:generateContent"
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": GENERATION_CONFIG,
        }

        try:
            resp = await http.post(url, params={"key": self.api_key}, json=payload)
        except httpx.HTTPError as e:
            raise ProviderError(str(e) or e.__class__.__name__, model=model) from e

        if resp.is_error:
            raise ProviderError(
                provider_error_message(resp), status=resp.status_code, model=model
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderError(
                "Provider returned a non-JSON body", status=resp.status_code, model=model
            ) from e
        return extract_candidate_text(data)

    # -------------------------------------------------------------------
    # Cascade
    # -------------------------------------------------------------------
    async def invoke(self, prompt: str, candidates: List[str]) -> Tuple[str, str]:
        """
        Try each candidate model in order until one answers.

        Parameters
        ----------
        prompt : str
            Instruction text.
        candidates : list[str]
            Ordered model ids, preferred first.

        Returns
        -------
        tuple[str, str]
            (raw reply text, id of the model that produced it)
        """
        if not candidates:
            raise ValueError("candidates must not be empty")

        last_error: Optional[ProviderError] = None
        for index, model in enumerate(candidates):
            try:
                text = await self.generate(prompt, model)
            except ProviderError as e:
                if not is_model_unavailable(e):
                    logger.warning(
                        "Model %s failed (HTTP %s): %s; not falling back",
                        model, e.status, e.message,
                    )
                    raise
                last_error = e
                logger.warning(
                    "Model %s unavailable (HTTP %s): %s", model, e.status, e.message
                )
                continue

            if index > 0:
                logger.info("Fell back to model %s after %d unavailable candidate(s)", model, index)
            return text, model

        logger.error("All %d model candidates unavailable", len(candidates))
        raise last_error
