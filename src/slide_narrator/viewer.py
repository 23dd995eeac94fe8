"""Navigation targets for the embedded slide viewer."""

from __future__ import annotations

import logging
from urllib.parse import urlencode

logger = logging.getLogger(__name__)

EMBED_BASE = "https://docs.google.com/presentation/d/{id}/embed"


class SlideViewer:
    """Tracks which slide the embedded viewer should be showing."""

    def __init__(self, presentation_id: str, delay_ms: int = 3000) -> None:
        self.presentation_id = presentation_id
        self._query = urlencode({"start": "false", "loop": "false", "delayms": delay_ms})
        self.current_slide_id: str | None = None

    @property
    def embed_url(self) -> str:
        return f"{EMBED_BASE.format(id=self.presentation_id)}?{self._query}"

    def url_for(self, slide_id: str) -> str:
        return f"{self.embed_url}#slide=id.{slide_id}"

    @property
    def current_url(self) -> str:
        if self.current_slide_id is None:
            return self.embed_url
        return self.url_for(self.current_slide_id)

    def show(self, slide_id: str) -> None:
        """Point the viewer at *slide_id*."""
        self.current_slide_id = slide_id
        logger.info("Viewer -> %s", self.current_url)
