# apps/recengine/ranking_client.py
"""Client for the external ranking model.

Any transport error, timeout, non-2xx status or unreadable body surfaces as
``UpstreamUnavailable`` so the orchestrator can fall back to vector search.
"""
import logging
from typing import List, Optional

import httpx
from pydantic import ValidationError

from config import settings
from errors import UpstreamUnavailable
from schemas import RankingRequest, RankingResponse

log = logging.getLogger("ranking_client")


class RankingClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._http = httpx.Client(
            base_url=base_url or settings.ranking_service_url,
            timeout=timeout if timeout is not None else settings.ranking_timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def recommend(
        self,
        user_id: int,
        content_type: Optional[str] = None,
        page: int = 0,
        page_size: int = 20,
    ) -> List[int]:
        payload = RankingRequest(
            userId=user_id, contentType=content_type, page=page, pageSize=page_size
        )
        try:
            resp = self._http.post("/recommendations", json=payload.model_dump())
            resp.raise_for_status()
            body = RankingResponse.model_validate(resp.json())
        except (httpx.HTTPError, ValueError, ValidationError) as exc:
            raise UpstreamUnavailable(str(exc)) from exc
        log.info("ranking_response user_id=%s count=%s", user_id, len(body.postIds))
        return body.postIds

    def healthcheck(self) -> bool:
        try:
            resp = self._http.get("/health")
            return resp.status_code < 500
        except httpx.HTTPError:
            return False


_client: Optional[RankingClient] = None


def get_client() -> RankingClient:
    global _client
    if _client is None:
        _client = RankingClient()
    return _client
