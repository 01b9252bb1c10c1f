"""Image provider — hands over the frame the user captured for this request."""

import logging

from contexttunes.services.signals.base import BaseProvider, Failure, ProviderResult, Source, Success

logger = logging.getLogger(__name__)


class ImageProvider(BaseProvider[bytes]):
    """Reads a previously captured frame buffer. Capture itself happens in the UI."""

    source = Source.IMAGE

    def __init__(self, frame: bytes | None):
        self._frame = frame

    async def _fetch(self) -> ProviderResult[bytes]:
        if not self._frame:
            logger.debug("No frame captured for this request")
            return Failure("no frame captured")
        return Success(bytes(self._frame))
