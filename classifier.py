from enum import Enum
from typing import Mapping, Optional

HTML_MEDIA_TYPE = "text/html"


class ResourceKind(str, Enum):
    HTML = "html"
    BINARY = "binary"


def classify(headers: Mapping[str, str]) -> ResourceKind:
    """
    Decides from the declared content type alone whether an upstream response
    is a landing page or the file itself. A missing content type counts as a
    file.
    """
    content_type: Optional[str] = headers.get("content-type")
    if content_type and HTML_MEDIA_TYPE in content_type.lower():
        return ResourceKind.HTML
    return ResourceKind.BINARY
