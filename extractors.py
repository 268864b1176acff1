"""
Landing-page extraction.

Some file hosts answer a share URL with an HTML page instead of the file. The
page embeds the real download URL in inline script data. Extractors are
registered per host and tried in registration order; the first one whose URL
predicate matches decides the result.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractedDownload:
    download_link: str
    filename: Optional[str] = None


UrlPredicate = Callable[[str], bool]
Extractor = Callable[[str], Optional[ExtractedDownload]]

_registry: List[Tuple[UrlPredicate, Extractor]] = []


def register_extractor(matches: UrlPredicate):
    def decorator(func: Extractor) -> Extractor:
        _registry.append((matches, func))
        return func

    return decorator


def extract_download(html: str, original_url: str) -> Optional[ExtractedDownload]:
    for matches, extractor in _registry:
        if matches(original_url):
            return extractor(html)
    return None


def host_matches(*domains: str) -> UrlPredicate:
    def matches(url: str) -> bool:
        host = (urlsplit(url).hostname or "").lower()
        return any(host == domain or host.endswith("." + domain) for domain in domains)

    return matches


# --- pCloud ---

PCLOUD_DATA_MARKER = "publinkData"
PCLOUD_DOWNLOAD_LINK = re.compile(r'"downloadlink"\s*:\s*"([^"]+)"')
PCLOUD_METADATA = re.compile(r'"metadata"\s*:\s*(\{[^}]+\})')


def _pcloud_filename(script: str) -> Optional[str]:
    match = PCLOUD_METADATA.search(script)
    if match is None:
        return None
    try:
        metadata = json.loads(match.group(1))
    except ValueError as exc:
        logger.debug("Could not parse pCloud metadata: %s", exc)
        return None
    name = metadata.get("name")
    return name if isinstance(name, str) and name else None


@register_extractor(host_matches("pcloud.link", "pcloud.com"))
def extract_pcloud(html: str) -> Optional[ExtractedDownload]:
    soup = BeautifulSoup(html, "html.parser")
    for script in soup.find_all("script"):
        content = script.string
        if not content or PCLOUD_DATA_MARKER not in content:
            continue
        # Only the first block carrying the marker is considered.
        match = PCLOUD_DOWNLOAD_LINK.search(content)
        if match is None:
            return None
        download_link = match.group(1).replace("\\/", "/")
        return ExtractedDownload(download_link, _pcloud_filename(content))
    return None
