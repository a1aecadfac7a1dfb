import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import cv2

from scene_regen.utils.logger import get_logger

logger = get_logger()


class FrameExtractor(ABC):
    """Pulls one representative frame out of rendered media."""

    @abstractmethod
    async def extract_frame(self, media_url: str, timestamp: float) -> Optional[bytes]:
        """
        Args:
            media_url: Local path or URL the backend can open.
            timestamp: Position in seconds.

        Returns:
            JPEG bytes, or None when the frame cannot be read.
        """
        pass


class OpenCVFrameExtractor(FrameExtractor):
    """
    Seeks with OpenCV and JPEG-encodes a single frame.
    Decoding is blocking, so it runs in a worker thread.
    """

    def __init__(self, jpeg_quality: int = 90):
        self.jpeg_quality = jpeg_quality

    async def extract_frame(self, media_url: str, timestamp: float) -> Optional[bytes]:
        return await asyncio.to_thread(self._read_frame, media_url, timestamp)

    def _read_frame(self, media_url: str, timestamp: float) -> Optional[bytes]:
        cap = cv2.VideoCapture(media_url)
        if not cap.isOpened():
            logger.error(f"❌ Could not open media: {media_url}")
            return None

        try:
            cap.set(cv2.CAP_PROP_POS_MSEC, max(timestamp, 0.0) * 1000)
            ret, frame = cap.read()
            if not ret:
                logger.warning(f"⚠️ No frame at {timestamp:.2f}s in {media_url}")
                return None

            ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
            if not ok:
                logger.warning(f"⚠️ JPEG encoding failed for {media_url} at {timestamp:.2f}s")
                return None
            return buffer.tobytes()

        except cv2.error as e:
            logger.error(f"🔥 Error extracting frame: {e}")
            return None

        finally:
            cap.release()
