"""
Frame input: a capture thread reads decoder chunks, carves frames out of them
and hands them to the pipeline through a bounded queue. The queue applies
backpressure to the decoder instead of dropping frames, because every frame
must reach the tracker in order.
"""

import logging
from queue import Empty, Full, Queue
from threading import Event, Thread
from typing import Any, Dict, Optional

from ..exceptions import DecoderError
from .frame_parser import Frame, JpegFrameParser
from .timestamps import TimestampCorrelator


_END_OF_STREAM = object()


class FrameSource:
    """
    Streams Frames from a decoder in strictly increasing index order.
    """

    def __init__(self,
                 decoder: Any,
                 parser: JpegFrameParser,
                 correlator: TimestampCorrelator,
                 buffer_size: int = 30,
                 source_id: str = 'video'):
        """
        Args:
            decoder: Object with chunks() yielding bytes and stop()
            parser: Frame parser used for this stream
            correlator: Timestamp source for emitted frames
            buffer_size: Maximum frames waiting for the consumer
            source_id: Name used in log messages
        """
        self.decoder = decoder
        self.parser = parser
        self.correlator = correlator
        self.source_id = source_id
        self.frame_queue: Queue = Queue(maxsize=buffer_size)
        self.is_running = False
        self.error: Optional[DecoderError] = None
        self.frame_count = 0
        self.logger = logging.getLogger(f"FrameSource.{source_id}")
        self.capture_thread: Optional[Thread] = None
        self.stop_event = Event()

    def start(self):
        """Start the frame capture thread"""
        self.is_running = True
        self.stop_event.clear()
        self.capture_thread = Thread(target=self._capture_loop, daemon=True)
        self.capture_thread.start()
        self.logger.info(f"Started frame source: {self.source_id}")

    def stop(self):
        """Stop accepting frames, stop the decoder and join the capture thread"""
        self.stop_event.set()
        self.decoder.stop()

        # Unblock a capture thread waiting on a full queue
        self._drain()

        if self.capture_thread and self.capture_thread.is_alive():
            self.capture_thread.join(timeout=5.0)

        self.is_running = False
        self.logger.info(f"Stopped frame source: {self.source_id}")

    def get_frame(self, timeout: Optional[float] = None) -> Optional[Frame]:
        """
        Next frame in index order, or None at end of stream.
        Once the decoder has failed, queued frames are discarded.

        Raises:
            DecoderError: if the decoder failed
            queue.Empty: if timeout elapses without a frame
        """
        self.raise_if_failed()
        item = self.frame_queue.get(timeout=timeout)
        self.raise_if_failed()
        if item is _END_OF_STREAM:
            return None
        return item

    def raise_if_failed(self):
        """Raise the decoder error, dropping every queued frame"""
        if self.error is not None:
            self._drain()
            raise self.error

    def get_properties(self) -> Dict[str, Any]:
        """Get source properties"""
        return {
            'source_id': self.source_id,
            'frame_count': self.frame_count,
            'progress_marks': len(self.correlator),
            'buffered_bytes': self.parser.buffered_bytes,
            'is_running': self.is_running,
            'queue_size': self.frame_queue.qsize()
        }

    def _capture_loop(self):
        try:
            frames = self.parser.iter_frames(
                self.decoder.chunks(),
                timestamp_fn=self.correlator.timestamp_for,
            )
            for frame in frames:
                if not self._put(frame):
                    break
                self.frame_count += 1
        except DecoderError as e:
            self.logger.error(f"Decoder failed for {self.source_id}: {e}")
            self.error = e
        except Exception as e:
            self.logger.error(f"Error in capture loop for {self.source_id}: {e}")
            self.error = DecoderError(str(e))
        finally:
            self._put(_END_OF_STREAM)
            self.is_running = False
            self.logger.info(f"Capture loop ended for {self.source_id} after {self.frame_count} frames")

    def _put(self, item) -> bool:
        """Blocking put that gives up once the source is stopped"""
        while not self.stop_event.is_set():
            try:
                self.frame_queue.put(item, timeout=0.1)
                return True
            except Full:
                continue
        return False

    def _drain(self):
        while True:
            try:
                self.frame_queue.get_nowait()
            except Empty:
                return
