"""
Offline-first facade used by the CLI (and any other front end).

Reads go to the portal API when it is reachable and refresh the local
cache; otherwise they are served from the cache. Writes that fail for a
transient reason are queued and replayed by the sync coordinator on the
next reconnect. Assistant questions fall back to the offline knowledge
resolver.
"""

import logging
from typing import Any, Dict, List, Optional

from portal.client.api_client import (
    PortalAPIClient, PortalClientError, ConnectivityError, NotFoundError,
    InvalidRequestError, TRANSIENT_ERRORS,
)
from portal.client.connectivity import ConnectivityMonitor
from portal.client.storage import OfflineStore
from portal.client.sync import SyncCoordinator, SyncReport
from portal.services.knowledge_fallback import (
    KnowledgeFallbackResolver, get_fallback_resolver, to_search_results,
)

logger = logging.getLogger(__name__)

SOURCE_REMOTE = "remote"
SOURCE_CACHE = "cache"
SOURCE_FALLBACK = "fallback"


class OfflinePortal:
    def __init__(
        self,
        api: PortalAPIClient,
        store: OfflineStore,
        monitor: Optional[ConnectivityMonitor] = None,
        resolver: Optional[KnowledgeFallbackResolver] = None,
        coordinator: Optional[SyncCoordinator] = None,
    ):
        self.api = api
        self.store = store
        self.monitor = monitor or ConnectivityMonitor()
        self.resolver = resolver or get_fallback_resolver()
        self.coordinator = coordinator or SyncCoordinator(store.queue, api)
        self.coordinator.attach(self.monitor)

    @classmethod
    def from_settings(cls, settings) -> "OfflinePortal":
        return cls(
            api=PortalAPIClient(settings.client_api_url, timeout_ms=settings.client_timeout_ms),
            store=OfflineStore(settings.client_cache_url),
        )

    async def start(self) -> bool:
        """Open the local store and probe the API once. Returns the online state."""
        if not await self.store.open():
            logger.warning("[OFFLINE] Running without local cache")
        return await self.refresh_connectivity()

    async def close(self) -> None:
        await self.api.aclose()
        await self.store.close()

    async def refresh_connectivity(self) -> bool:
        try:
            await self.api.health()
            online = True
        except PortalClientError as e:
            logger.info("[OFFLINE] Portal API unreachable: %s", e)
            online = False
        await self.monitor.set_online(online)
        return online

    async def sync_now(self) -> SyncReport:
        return await self.coordinator.drain()

    async def _went_offline(self, error: PortalClientError) -> None:
        if isinstance(error, ConnectivityError):
            await self.monitor.set_online(False)

    # ── Reads ────────────────────────────────────────────────

    async def list_services(self, category: Optional[str] = None, search: Optional[str] = None) -> Dict[str, Any]:
        if self.monitor.is_online:
            try:
                data = await self.api.list_services(category=category, search=search)
            except TRANSIENT_ERRORS as e:
                logger.warning("[OFFLINE] Service list unavailable, serving cache: %s", e)
                await self._went_offline(e)
            else:
                services = data.get("services", [])
                await self.store.cache.put_many("services", services)
                return {"services": services, "total": len(services), "source": SOURCE_REMOTE}

        services = await self.store.cache.get_all("services")
        if category:
            services = [s for s in services if s.get("category") == category]
        if search and search.strip():
            needle = search.strip().lower()
            services = [
                s for s in services
                if needle in (s.get("title") or "").lower() or needle in (s.get("description") or "").lower()
            ]
        return {"services": services, "total": len(services), "source": SOURCE_CACHE}

    async def get_service(self, service_id: str) -> Dict[str, Any]:
        """Service by id, remote first. Raises NotFoundError when neither side has it."""
        if self.monitor.is_online:
            try:
                service = await self.api.get_service(service_id)
            except NotFoundError:
                logger.info("[OFFLINE] Service %s not found remotely", service_id)
            except TRANSIENT_ERRORS as e:
                logger.warning("[OFFLINE] Service %s unavailable, trying cache: %s", service_id, e)
                await self._went_offline(e)
            else:
                await self.store.cache.put("services", service)
                return {"service": service, "source": SOURCE_REMOTE}

        cached = await self.store.cache.get("services", service_id)
        if cached is None:
            raise NotFoundError(f"Service {service_id} not found", status_code=404)
        return {"service": cached, "source": SOURCE_CACHE}

    async def recent_activities(self) -> List[Dict[str, Any]]:
        return await self.store.cache.get_all("recent_activities")

    # ── Writes ───────────────────────────────────────────────

    async def submit_feedback(
        self,
        rating: int,
        comment: Optional[str] = None,
        suggestion: Optional[str] = None,
        service_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not isinstance(rating, int) or not 1 <= rating <= 5:
            raise InvalidRequestError("rating must be an integer between 1 and 5")

        payload = {"rating": rating, "comment": comment, "suggestion": suggestion, "service_id": service_id}
        payload = {k: v for k, v in payload.items() if v is not None}

        if self.monitor.is_online:
            try:
                saved = await self.api.submit_feedback(payload)
            except TRANSIENT_ERRORS as e:
                logger.warning("[OFFLINE] Feedback not delivered, queueing: %s", e)
                await self._went_offline(e)
            else:
                await self.store.cache.add_recent_activity({"type": "feedback", "rating": rating})
                return {"status": "sent", "feedback": saved}

        queued = await self.store.queue.enqueue("feedback", payload)
        if queued is None:
            logger.error("[OFFLINE] Feedback could not be queued, local store unavailable")
            return {"status": "failed", "queue_id": None}
        return {"status": "queued", "queue_id": queued.id}

    # ── Assistant ────────────────────────────────────────────

    async def ask(self, question: str, language: str = "fr", conversation_key: Optional[str] = None) -> Dict[str, Any]:
        if not question or not question.strip():
            raise InvalidRequestError("Question is required")
        question = question.strip()

        if self.monitor.is_online:
            try:
                reply = await self.api.ask(question, language=language, conversation_key=conversation_key)
            except TRANSIENT_ERRORS as e:
                logger.warning("[OFFLINE] Assistant unavailable, answering offline: %s", e)
                await self._went_offline(e)
            else:
                await self.store.cache.add_recent_activity({"type": "question", "question": question})
                return reply

        return self.resolver.resolve(question, language).to_dict()

    async def search_knowledge(self, query: str, limit: int = 10) -> Dict[str, Any]:
        if not query or not query.strip():
            raise InvalidRequestError("Search query is required")

        if self.monitor.is_online:
            try:
                data = await self.api.search_knowledge(query, limit=limit)
            except TRANSIENT_ERRORS as e:
                logger.warning("[OFFLINE] Knowledge search unavailable, using offline FAQ: %s", e)
                await self._went_offline(e)
            else:
                return {**data, "source": SOURCE_REMOTE}

        results = to_search_results(self.resolver.resolve(query))[:limit]
        return {"results": results, "query": query, "total": len(results), "source": SOURCE_FALLBACK}
