"""
AI Gateway — adapter for the remote assistant backend.

Two wire dialects exist for the same backend, selected once from
configuration by ``build_gateway``:

  legacy (stateless)
      POST {base}/analyze   file upload, JSON {text, prompt, message},
                            or raw text; answer in response|answer|analysis
  rafiq (session)
      GET  {base}/session/new               -> {session_id}
      POST {base}/add-knowledge {session_id, text}
      POST {base}/chat          {session_id, message} -> {answer|response|analysis}

Whatever goes wrong on the wire (timeout, transport error, non-2xx,
malformed body, no answer field), ``chat()`` returns the knowledge
fallback resolver's answer for the last user message instead of raising.

Usage:
    from portal.services.ai_gateway import build_gateway, SessionRegistry

    gateway = build_gateway(settings, registry=SessionRegistry())
    reply = await gateway.chat(
        [{"role": "user", "content": "Pièces pour passeport ?"}],
        conversation_key=conversation.id,
    )
"""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncContextManager, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import httpx

from portal.services.knowledge_fallback import (
    FallbackAnswer,
    KnowledgeFallbackResolver,
    get_fallback_resolver,
)
from portal.services.keyed_locks import KeyedLocks

logger = logging.getLogger(__name__)

SOURCE_AI = "ai"
ONE_SHOT_KEY_PREFIX = "ask-"
HEALTH_CHECK_KEY = "health-check"
DEFAULT_SYSTEM_PROMPT = (
    "Tu es un assistant administratif algérien qui répond de manière claire et concise."
)
LEGACY_PAYLOAD_MODES = ("auto", "file", "json", "text")
CONNECTIVITY_PROBE = "Test rapide de connectivité"

# Errors that mean "the gateway did not give us an answer this time"
_EXPECTED_ERRORS = (httpx.HTTPError, ValueError)


class GatewayError(Exception):
    """The gateway responded, but not with something usable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ApiStyle(str, Enum):
    LEGACY = "legacy"
    SESSION = "rafiq"


def resolve_api_style(style: Optional[str], base_url: str) -> ApiStyle:
    """Explicit style wins; otherwise a base URL on port 8000 means the session API."""
    configured = (style or "").strip().lower()
    if configured in ("legacy", "analyze"):
        return ApiStyle.LEGACY
    if configured in ("rafiq", "session"):
        return ApiStyle.SESSION
    if ":8000" in (base_url or ""):
        return ApiStyle.SESSION
    return ApiStyle.LEGACY


@dataclass
class AssistantReply:
    """Assistant answer, tagged with where it came from (ai | knowledge-base | default)."""
    message: str
    recommendations: List[Dict[str, str]] = field(default_factory=list)
    source: str = SOURCE_AI

    @classmethod
    def from_fallback(cls, answer: FallbackAnswer) -> "AssistantReply":
        return cls(
            message=answer.message,
            recommendations=[dict(r) for r in answer.recommendations],
            source=answer.source,
        )

    @property
    def degraded(self) -> bool:
        return self.source != SOURCE_AI

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "recommendations": [dict(r) for r in self.recommendations],
            "source": self.source,
        }


# ── Session bookkeeping (session dialect) ────────────────────


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    SESSION_CREATING = "session_creating"
    SESSION_ACTIVE = "session_active"


@dataclass
class GatewaySession:
    """Handle on one remote session, bound to the endpoint that issued it."""
    id: str
    base_url: str = ""
    knowledge_loaded: bool = False
    created_at: float = field(default_factory=time.time)


class SessionRegistry:
    """
    Conversation key -> remote session, shared by all requests of the process.

    Creation and priming for a key are serialized through that key's lock;
    different keys never wait on each other. Nothing here survives a
    restart, which is fine because remote sessions do not either.
    """

    def __init__(self):
        self._sessions: Dict[str, GatewaySession] = {}
        self._creating: Set[str] = set()
        self._locks = KeyedLocks()

    def hold(self, key: str) -> AsyncContextManager[None]:
        return self._locks.hold(key)

    def lock_count(self) -> int:
        return len(self._locks)

    def get(self, key: str) -> Optional[GatewaySession]:
        return self._sessions.get(key)

    def state(self, key: str) -> SessionState:
        if key in self._sessions:
            return SessionState.SESSION_ACTIVE
        if key in self._creating:
            return SessionState.SESSION_CREATING
        return SessionState.NO_SESSION

    def mark_creating(self, key: str) -> None:
        self._creating.add(key)

    def activate(self, key: str, session: GatewaySession) -> None:
        self._creating.discard(key)
        self._sessions[key] = session

    def drop(self, key: str) -> bool:
        self._creating.discard(key)
        return self._sessions.pop(key, None) is not None

    def keys(self) -> List[str]:
        return list(self._sessions.keys())

    def __contains__(self, key: str) -> bool:
        return key in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


# ── Helpers ──────────────────────────────────────────────────


def last_user_message(messages: Sequence[Dict[str, Any]]) -> str:
    for msg in reversed(messages):
        if msg.get("role") == "user" and msg.get("content"):
            return msg["content"]
    return ""


def build_conversation_prompt(
    messages: Sequence[Dict[str, Any]],
    system_prompt: str,
    turns: int = 10,
) -> str:
    history = "\n".join(
        f"{'Utilisateur' if msg.get('role') == 'user' else 'Assistant'}: {msg.get('content', '')}"
        for msg in list(messages)[-turns:]
    )
    return f"{system_prompt}\n\nHistorique récent:\n{history}"


def extract_answer(body: Any, fields: Iterable[str]) -> Optional[str]:
    """Pull the answer out of a raw text or JSON body; None when there is none."""
    if isinstance(body, str):
        return body if body.strip() else None
    if isinstance(body, dict):
        for name in fields:
            value = body.get(name)
            if isinstance(value, str) and value.strip():
                return value
    return None


# ── Gateways ─────────────────────────────────────────────────


class AIGateway(ABC):
    """Common behaviour: timeout, cancellation and fallback around one turn."""

    dialect: str = ""
    answer_fields: Sequence[str] = ("response", "answer", "analysis")

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout_ms: int = 5000,
        resolver: Optional[KnowledgeFallbackResolver] = None,
        client: Optional[httpx.AsyncClient] = None,
        history_turns: int = 10,
    ):
        self.base_url = (base_url or "").strip().rstrip("/")
        self.api_key = (api_key or "").strip()
        self.timeout_seconds = max(int(timeout_ms), 1) / 1000.0
        self.resolver = resolver or get_fallback_resolver()
        self.history_turns = history_turns
        self._client = client
        self._owns_client = client is None
        self._inflight: Dict[str, Set[asyncio.Task]] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    def headers(self, json_body: bool = True) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        if json_body:
            headers["Content-Type"] = "application/json"
        headers["Accept"] = "application/json"
        return headers

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def chat(
        self,
        messages: Sequence[Dict[str, Any]],
        *,
        conversation_key: Optional[str] = None,
        language: str = "fr",
        system_prompt: Optional[str] = None,
    ) -> AssistantReply:
        """Answer the conversation's last user turn. Never raises for gateway failures.

        Without a ``conversation_key`` the turn gets a one-shot key of its own,
        and whatever remote state it created is released when it ends.
        """
        fallback = AssistantReply.from_fallback(
            self.resolver.resolve(last_user_message(messages), language)
        )
        if not self.enabled:
            return fallback

        prompt = build_conversation_prompt(
            messages, system_prompt or DEFAULT_SYSTEM_PROMPT, self.history_turns
        )
        if conversation_key:
            return await self._run_turn(prompt, conversation_key, fallback)

        key = f"{ONE_SHOT_KEY_PREFIX}{uuid.uuid4().hex[:12]}"
        try:
            return await self._run_turn(prompt, key, fallback)
        finally:
            self._release(key)

    async def _run_turn(self, prompt: str, key: str, fallback: AssistantReply) -> AssistantReply:
        task = asyncio.create_task(self._complete(prompt, key))
        self._inflight.setdefault(key, set()).add(task)
        try:
            done, _ = await asyncio.wait({task}, timeout=self.timeout_seconds)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self._untrack(key, task)

        if not done:
            task.cancel()
            logger.warning(
                "[AI] %s turn for %s timed out after %.1fs, using fallback",
                self.dialect, key, self.timeout_seconds,
            )
            self._forget(key)
            return fallback

        if task.cancelled():
            logger.info("[AI] %s turn for %s abandoned", self.dialect, key)
            return fallback

        exc = task.exception()
        if exc is not None:
            if isinstance(exc, _EXPECTED_ERRORS + (GatewayError,)):
                logger.warning("[AI] %s turn for %s failed: %s", self.dialect, key, exc)
            else:
                logger.error(
                    "[AI] %s turn for %s crashed", self.dialect, key, exc_info=exc,
                )
            self._forget(key)
            return fallback

        answer = task.result()
        if answer is None:
            logger.warning("[AI] %s gateway returned no answer for %s", self.dialect, key)
            return fallback
        return AssistantReply(message=answer, source=SOURCE_AI)

    async def abandon(self, conversation_key: str) -> int:
        """Cancel pending turns for a conversation and forget its session."""
        tasks = list(self._inflight.pop(conversation_key, set()))
        for task in tasks:
            task.cancel()
        self._forget(conversation_key)
        if tasks:
            logger.info("[AI] Abandoned %d pending turn(s) for %s", len(tasks), conversation_key)
        return len(tasks)

    async def health_check(self) -> bool:
        """True when the backend produced a real answer within the timeout."""
        if not self.enabled:
            return False
        try:
            answer = await asyncio.wait_for(self._probe(), self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("[AI] %s health check timed out", self.dialect)
            return False
        except _EXPECTED_ERRORS + (GatewayError,) as exc:
            logger.warning("[AI] %s health check failed: %s", self.dialect, exc)
            return False
        return answer is not None

    async def aclose(self) -> None:
        for key in list(self._inflight):
            await self.abandon(key)
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Dialect hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def _complete(self, prompt: str, key: str) -> Optional[str]:
        """Run one turn on the wire and return the answer text (or None)."""

    @abstractmethod
    async def _probe(self) -> Optional[str]:
        """Run a connectivity probe and return the answer text (or None)."""

    def _forget(self, key: str) -> None:
        """Drop per-conversation state after a failure."""

    def _release(self, key: str) -> None:
        """Drop a one-shot key's state once its turn is over."""

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _send(self, method: str, url: str, **kwargs) -> Any:
        kwargs.setdefault("timeout", self.timeout_seconds)
        response = await self.client.request(method, url, **kwargs)
        if response.status_code >= 400:
            raise GatewayError(
                f"AI API error {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            return response.json()
        return response.text

    def _untrack(self, key: str, task: asyncio.Task) -> None:
        tasks = self._inflight.get(key)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            self._inflight.pop(key, None)


class LegacyGateway(AIGateway):
    """Stateless ``/analyze`` dialect."""

    dialect = "legacy"
    answer_fields = ("response", "answer", "analysis")

    def __init__(self, base_url: str, *, payload_mode: str = "text", **kwargs):
        super().__init__(base_url, **kwargs)
        mode = (payload_mode or "").strip().lower()
        self.payload_mode = mode if mode in LEGACY_PAYLOAD_MODES else "text"

    @property
    def analyze_url(self) -> str:
        return f"{self.base_url}/analyze"

    async def _complete(self, prompt: str, key: str) -> Optional[str]:
        return extract_answer(await self.analyze(prompt), self.answer_fields)

    async def _probe(self) -> Optional[str]:
        return extract_answer(await self.analyze(CONNECTIVITY_PROBE), self.answer_fields)

    async def analyze(self, text: str) -> Any:
        if self.payload_mode == "json":
            return await self._analyze_json(text)
        if self.payload_mode == "file":
            return await self._analyze_file(text)
        if self.payload_mode == "text":
            return await self._analyze_text(text)

        # auto: file upload first, JSON when the server cannot parse the upload
        try:
            return await self._analyze_file(text)
        except GatewayError as exc:
            if not _should_retry_as_json(exc):
                raise
            logger.warning("[AI] Legacy analyze falling back to JSON payload: %s", exc)
            return await self._analyze_json(text)

    async def _analyze_json(self, text: str) -> Any:
        return await self._send(
            "POST",
            self.analyze_url,
            json={"text": text, "prompt": text, "message": text},
            headers=self.headers(),
        )

    async def _analyze_file(self, text: str) -> Any:
        return await self._send(
            "POST",
            self.analyze_url,
            files={"file": ("query.txt", text.encode("utf-8"), "text/plain")},
            headers=self.headers(json_body=False),
        )

    async def _analyze_text(self, text: str) -> Any:
        headers = self.headers(json_body=False)
        headers["Content-Type"] = "text/plain; charset=utf-8"
        return await self._send(
            "POST", self.analyze_url, content=text.encode("utf-8"), headers=headers,
        )


def _should_retry_as_json(error: GatewayError) -> bool:
    if error.status_code == 400:
        return True
    message = str(error).lower()
    return "parse" in message or "parsing" in message


class SessionGateway(AIGateway):
    """Stateful dialect: one primed remote session per conversation key."""

    dialect = "rafiq"
    answer_fields = ("answer", "response", "analysis")

    def __init__(
        self,
        base_url: str,
        *,
        registry: SessionRegistry,
        default_knowledge: str = "",
        fallback_base_urls: Sequence[str] = (),
        **kwargs,
    ):
        super().__init__(base_url, **kwargs)
        self.registry = registry
        self.default_knowledge = default_knowledge
        candidates = [self.base_url] + [(u or "").strip().rstrip("/") for u in fallback_base_urls]
        self.base_urls: List[str] = []
        for url in candidates:
            if url and url not in self.base_urls:
                self.base_urls.append(url)

    async def ensure_session(self, key: str, base_urls: Optional[Sequence[str]] = None) -> GatewaySession:
        """Reuse the key's session, creating and priming it on first use."""
        async with self.registry.hold(key):
            session = self.registry.get(key)
            if session is None:
                session = await self._create_session(key, base_urls or self.base_urls)
            await self._ensure_knowledge(session)
        return session

    async def _create_session(self, key: str, base_urls: Sequence[str]) -> GatewaySession:
        self.registry.mark_creating(key)
        try:
            base, body = await self._request(
                base_urls, "GET", "/session/new", headers=self.headers(json_body=False),
            )
            session_id = body.get("session_id") if isinstance(body, dict) else None
            if not session_id:
                raise GatewayError("AI session creation failed")
        except BaseException:
            self.registry.drop(key)
            raise
        session = GatewaySession(id=str(session_id), base_url=base)
        self.registry.activate(key, session)
        logger.info("[AI] Session %s created on %s for %s", session.id, base, key)
        return session

    async def _ensure_knowledge(self, session: GatewaySession) -> None:
        if session.knowledge_loaded or not self.default_knowledge:
            return
        try:
            await self._send(
                "POST",
                f"{session.base_url}/add-knowledge",
                json={"session_id": session.id, "text": self.default_knowledge},
                headers=self.headers(),
            )
        except _EXPECTED_ERRORS + (GatewayError,) as exc:
            # Retried on the next turn
            logger.warning("[AI] Failed to add default knowledge to %s: %s", session.id, exc)
            return
        session.knowledge_loaded = True

    async def _complete(self, prompt: str, key: str) -> Optional[str]:
        session = await self.ensure_session(key)
        try:
            body = await self._chat(session, prompt)
        except (httpx.HTTPError, GatewayError) as exc:
            # A session id is only valid on the endpoint that issued it
            remaining = self._endpoints_after(session.base_url)
            if not remaining:
                raise
            logger.warning(
                "[AI] Chat failed on %s for %s (%s), opening a session on %s",
                session.base_url, key, exc, remaining[0],
            )
            if self.registry.get(key) is session:
                self.registry.drop(key)
            session = await self.ensure_session(key, remaining)
            body = await self._chat(session, prompt)
        return extract_answer(body, self.answer_fields)

    async def _chat(self, session: GatewaySession, prompt: str) -> Any:
        return await self._send(
            "POST",
            f"{session.base_url}/chat",
            json={"session_id": session.id, "message": prompt},
            headers=self.headers(),
        )

    async def _probe(self) -> Optional[str]:
        try:
            return await self._complete(
                f'{CONNECTIVITY_PROBE}. Réponds simplement "pong".', HEALTH_CHECK_KEY,
            )
        finally:
            self.registry.drop(HEALTH_CHECK_KEY)

    def _forget(self, key: str) -> None:
        if self.registry.drop(key):
            logger.info("[AI] Dropped session for %s", key)

    def _release(self, key: str) -> None:
        self.registry.drop(key)

    def _endpoints_after(self, base_url: str) -> List[str]:
        if base_url not in self.base_urls:
            return []
        return self.base_urls[self.base_urls.index(base_url) + 1:]

    async def _request(self, base_urls: Sequence[str], method: str, path: str, **kwargs) -> Tuple[str, Any]:
        """Try each endpoint in order; return the one that answered and its body."""
        last_error: Optional[Exception] = None
        for base in base_urls:
            try:
                return base, await self._send(method, f"{base}{path}", **kwargs)
            except (httpx.HTTPError, GatewayError) as exc:
                last_error = exc
                logger.warning("[AI] Request failed for %s%s: %s", base, path, exc)
        raise last_error or GatewayError("AI request failed for all endpoints")


def build_gateway(
    settings,
    registry: Optional[SessionRegistry] = None,
    resolver: Optional[KnowledgeFallbackResolver] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> AIGateway:
    """Pick the dialect once from configuration and build the gateway."""
    style = resolve_api_style(settings.ai_api_style, settings.ai_base_url)
    common = dict(
        api_key=settings.ai_api_key,
        timeout_ms=settings.ai_timeout_ms,
        resolver=resolver,
        client=client,
        history_turns=settings.ai_history_turns,
    )
    if style is ApiStyle.SESSION:
        gateway: AIGateway = SessionGateway(
            settings.ai_base_url,
            registry=registry if registry is not None else SessionRegistry(),
            default_knowledge=settings.ai_default_knowledge,
            fallback_base_urls=settings.ai_fallback_base_urls,
            **common,
        )
    else:
        gateway = LegacyGateway(
            settings.ai_base_url, payload_mode=settings.ai_legacy_payload, **common
        )

    if gateway.enabled:
        logger.info("[AI] Gateway initialized (endpoint: %s, mode: %s)", gateway.base_url, gateway.dialect)
    else:
        logger.warning("[AI] No AI endpoint configured, answering from the offline knowledge base")
    return gateway
