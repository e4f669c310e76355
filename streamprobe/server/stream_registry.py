"""
MODULE OVERVIEW:
Book-keeping for the streams the demo server has open.

WHAT IS HAPPENING HERE:
Every SSE endpoint registers its stream here on the way in and removes it on the way
out, and counts each frame it sends. `/stats` reads the result. Nothing here holds
sockets; sse-starlette owns those.
"""

import uuid
from datetime import datetime, timezone
from typing import Dict

from loguru import logger

from streamprobe.shared.models import StreamStats

class StreamRegistry:
    def __init__(self):
        # stream id -> request path
        self.active_streams: Dict[str, str] = {}
        self.total_streams = 0
        self.total_frames = 0
        self.startup_time = datetime.now(timezone.utc)

    def open_stream(self, path: str) -> str:
        stream_id = f"stream-{str(uuid.uuid4())[:4]}"
        self.active_streams[stream_id] = path
        self.total_streams += 1
        logger.info(f"stream_id={stream_id} protocol=sse event=connect path={path}")
        return stream_id

    def close_stream(self, stream_id: str):
        if stream_id in self.active_streams:
            path = self.active_streams.pop(stream_id)
            logger.info(f"stream_id={stream_id} protocol=sse event=disconnect path={path}")

    def count_frame(self):
        self.total_frames += 1

    def get_stats(self) -> StreamStats:
        return StreamStats(
            active_streams=len(self.active_streams),
            total_streams=self.total_streams,
            total_frames_sent=self.total_frames,
            uptime_s=(datetime.now(timezone.utc) - self.startup_time).total_seconds(),
            server_time=datetime.now(timezone.utc)
        )

# Global singleton instance
registry = StreamRegistry()
