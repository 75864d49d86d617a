"""
Photo capture collaborator.

A capture device has one method, capture() -> image URI or None, and may
raise CaptureCancelled when the user closes it. FileCapture stands in for a
camera on machines where the photo is taken by another tool.
"""

from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

from .config import log
from .errors import CaptureCancelled


def uri_to_path(uri):
    if uri.startswith("file:"):
        return Path(url2pathname(urlparse(uri).path))
    return Path(uri)


class FileCapture:
    """Hands back an existing JPEG on disk as the captured photo."""

    def __init__(self, path):
        self.path = Path(path) if path else None

    def capture(self):
        if self.path is None:
            raise CaptureCancelled("No photo selected")
        if not self.path.is_file():
            log.error("Photo not found: %s", self.path)
            return None
        return self.path.resolve().as_uri()
