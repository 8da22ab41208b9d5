"""
Carves JPEG frames out of a continuous MJPEG byte stream.
Chunk boundaries coming from the decoder pipe are arbitrary, so the parser
keeps a growing buffer and a single "inside a frame" flag between calls.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional

from ..exceptions import FrameBufferOverflowError


SOI = b'\xff\xd8'  # Start of image
EOI = b'\xff\xd9'  # End of image

DEFAULT_MAX_BUFFER_BYTES = 64 * 1024 * 1024


@dataclass(frozen=True)
class Frame:
    """
    A single still image taken from the stream
    """
    index: int
    data: bytes
    timestamp: float


class JpegFrameParser:
    """
    Greedy SOI/EOI scanner. Emits the bytes from a start marker through the
    first end marker after it, inclusive of both markers. Nested or corrupt
    marker sequences are not recovered.
    """

    def __init__(self, max_buffer_bytes: Optional[int] = DEFAULT_MAX_BUFFER_BYTES):
        """
        Args:
            max_buffer_bytes: Upper bound on retained bytes, None disables the bound
        """
        self.max_buffer_bytes = max_buffer_bytes
        self._buffer = bytearray()
        self._in_frame = False
        self._scan_from = 0
        self.frames_emitted = 0
        self.logger = logging.getLogger(__name__)

    @property
    def buffered_bytes(self) -> int:
        return len(self._buffer)

    @property
    def in_frame(self) -> bool:
        return self._in_frame

    def reset(self):
        """Drop buffered data and start looking for a new start marker"""
        self._buffer = bytearray()
        self._in_frame = False
        self._scan_from = 0
        self.frames_emitted = 0

    def feed(self, chunk: bytes) -> List[bytes]:
        """
        Append a chunk and return every frame it completes.

        Args:
            chunk: Raw bytes from the decoder, any size

        Returns:
            Complete frames in stream order (possibly empty)

        Raises:
            FrameBufferOverflowError: if the retained buffer exceeds the bound
        """
        if not chunk:
            return []

        self._buffer.extend(chunk)
        frames = []

        while True:
            if not self._in_frame:
                soi_index = self._buffer.find(SOI)
                if soi_index == -1:
                    # Only a trailing 0xFF can still become part of a marker
                    if self._buffer[-1:] == SOI[:1]:
                        del self._buffer[:-1]
                    else:
                        self._buffer.clear()
                    break
                del self._buffer[:soi_index]
                self._in_frame = True
                self._scan_from = len(SOI)

            eoi_index = self._buffer.find(EOI, self._scan_from)
            if eoi_index == -1:
                # Resume one byte back in case the marker is split across chunks
                self._scan_from = max(len(SOI), len(self._buffer) - 1)
                break

            end = eoi_index + len(EOI)
            frames.append(bytes(self._buffer[:end]))
            del self._buffer[:end]
            self._in_frame = False
            self._scan_from = 0

        self.frames_emitted += len(frames)
        self._check_bound()
        return frames

    def _check_bound(self):
        if self.max_buffer_bytes is None:
            return
        if len(self._buffer) > self.max_buffer_bytes:
            size = len(self._buffer)
            self.logger.error(
                f"Frame buffer holds {size} bytes without an end marker "
                f"(limit {self.max_buffer_bytes})"
            )
            raise FrameBufferOverflowError(
                f"Frame buffer exceeded {self.max_buffer_bytes} bytes ({size} buffered)"
            )

    def iter_frames(self,
                    chunks: Iterable[bytes],
                    start_index: int = 0,
                    timestamp_fn: Optional[Callable[[int], float]] = None) -> Iterator[Frame]:
        """
        Lazily turn a chunk iterable into Frame objects with consecutive indices.

        Args:
            chunks: Iterable of raw byte chunks
            start_index: Index given to the first emitted frame
            timestamp_fn: Maps a frame index to its capture time (defaults to 0.0)
        """
        index = start_index
        for chunk in chunks:
            for data in self.feed(chunk):
                timestamp = timestamp_fn(index) if timestamp_fn else 0.0
                yield Frame(index=index, data=data, timestamp=timestamp)
                index += 1
