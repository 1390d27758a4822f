import base64
import hashlib
import logging
import time

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class GenerationError(Exception):
    def __init__(self, kind: str, detail: str):
        super().__init__(detail)
        self.kind = kind
        self.detail = detail


class GenerationClient:
    """Calls the external paper/script/audio/video services.

    What happens on the other side is opaque to us; each stage takes a JSON
    payload and answers with a JSON payload.
    """

    def __init__(self, provider: str | None = None, transport: httpx.BaseTransport | None = None):
        self.provider = (provider or settings.generation_provider).lower()
        self._transport = transport
        self._http_client: httpx.Client | None = None

    @property
    def http_client(self) -> httpx.Client:
        """Lazily-created, reusable httpx client with connection pooling."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.Client(
                base_url=settings.generation_base_url.rstrip("/"),
                timeout=settings.generation_timeout_seconds,
                trust_env=False,
                transport=self._transport,
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
        return self._http_client

    def close(self):
        if self._http_client and not self._http_client.is_closed:
            self._http_client.close()

    # ---- low-level helpers ----

    def _post(self, stage: str, payload: dict, error_kind: str) -> dict:
        headers = {"Content-Type": "application/json"}
        if settings.generation_api_key:
            headers["Authorization"] = f"Bearer {settings.generation_api_key}"

        attempts = settings.generation_max_retries + 1
        last_detail = ""
        for attempt in range(1, attempts + 1):
            try:
                resp = self.http_client.post(f"/{stage}", headers=headers, json=payload)
            except httpx.TransportError as exc:
                last_detail = f"{type(exc).__name__}: {exc}"
            else:
                if resp.is_success:
                    try:
                        return resp.json()
                    except ValueError as exc:
                        raise GenerationError(error_kind, f"{stage} returned invalid JSON") from exc
                last_detail = f"{stage} answered {resp.status_code}: {resp.text[:500]}"
                if resp.status_code not in _RETRYABLE_STATUS:
                    raise GenerationError(error_kind, last_detail)

            if attempt < attempts:
                logger.warning("Generation stage %s failed (attempt %d/%d): %s", stage, attempt, attempts, last_detail)
                time.sleep(min(2 ** (attempt - 1), 8))
        raise GenerationError(error_kind, last_detail)

    def _require(self, data: dict, key: str, stage: str, error_kind: str):
        value = data.get(key)
        if not value:
            raise GenerationError(error_kind, f"{stage} response is missing {key!r}")
        return value

    # ---- stages ----

    def fetch_paper(self, external_ref: str) -> str:
        """Return the paper's plain text."""
        if self.provider == "mock":
            return f"Abstract of {external_ref}. We study a problem. We propose a method. It works."
        data = self._post("papers", {"external_ref": external_ref}, "PAPER_FETCH_FAILED")
        return self._require(data, "text", "papers", "PAPER_FETCH_FAILED")

    def write_script(self, paper_text: str) -> str:
        if self.provider == "mock":
            sentences = [s.strip() for s in paper_text.split(".") if s.strip()]
            return "\n".join(sentences[:5])
        data = self._post("scripts", {"paper_text": paper_text}, "SCRIPT_FAILED")
        return self._require(data, "script", "scripts", "SCRIPT_FAILED")

    def synthesize_audio(self, script: str) -> bytes:
        if self.provider == "mock":
            return hashlib.sha256(script.encode("utf-8")).digest()
        data = self._post("audio", {"script": script}, "AUDIO_FAILED")
        return base64.b64decode(self._require(data, "audio_b64", "audio", "AUDIO_FAILED"))

    def render_video(self, script: str, audio: bytes) -> bytes:
        if self.provider == "mock":
            return b"MOCKVIDEO" + audio + script.encode("utf-8")
        payload = {"script": script, "audio_b64": base64.b64encode(audio).decode("ascii")}
        data = self._post("videos", payload, "RENDER_FAILED")
        return base64.b64decode(self._require(data, "video_b64", "videos", "RENDER_FAILED"))
