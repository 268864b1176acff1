import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from models import utcnow
from schemas import LinkChanges

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    is_valid: bool
    status_code: Optional[int] = None
    error: Optional[str] = None

    def as_changes(self) -> LinkChanges:
        return LinkChanges(
            is_valid=self.is_valid,
            last_checked=utcnow(),
            status_code=self.status_code,
            error=self.error,
        )


async def probe_url(
    client: httpx.AsyncClient, url: str, timeout: float = 10.0
) -> ProbeResult:
    """
    HEAD ``url`` without following redirects. Any 2xx or 3xx answer counts as
    alive.
    """
    try:
        response = await client.head(url, timeout=timeout, follow_redirects=False)
    except httpx.TimeoutException:
        logger.info("Liveness probe for %s timed out", url)
        return ProbeResult(is_valid=False, error="Request timeout")
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.info("Liveness probe for %s failed: %s", url, exc)
        return ProbeResult(is_valid=False, error=str(exc) or exc.__class__.__name__)
    return ProbeResult(
        is_valid=200 <= response.status_code < 400,
        status_code=response.status_code,
    )
