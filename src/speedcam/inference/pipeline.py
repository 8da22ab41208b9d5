"""
Speed estimation pipeline for one recorded video.

Frames arrive from a capture thread in index order. Detection may run ahead
of the consumer, but the tracker and the speed estimator are only ever fed by
the single consumer loop, one frame at a time in strictly increasing index
order. Annotated frames are written by a separate writer pool since their
file names depend only on the frame index.
"""

import argparse
import json
import logging
import sys
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

import numpy as np

from ..config import PipelineConfig, load_config, setup_logging
from ..core.frame_parser import Frame, JpegFrameParser
from ..core.timestamps import TimestampCorrelator
from ..core.video_input import FrameSource
from ..core.video_io import FFmpegDecoder, FFmpegEncoder, FrameStore
from ..exceptions import (
    ConfigError,
    DecoderError,
    EncoderError,
    FrameProcessingError,
    SpeedCamError,
)
from ..models.detector import Detector, create_detector, normalize_detections
from ..tracking.tracker import Tracker, create_tracker
from ..velocity.aggregation import ResultAggregator, VehicleRecord
from ..velocity.calibration import Calibration
from ..velocity.speed_estimator import SpeedEstimator
from ..velocity.zones import DetectionZoneFilter
from ..visual.renderer import AnnotationRenderer, decode_image


class PipelineState(Enum):
    INIT = 'init'
    STREAMING = 'streaming'
    DRAINING = 'draining'
    FINALIZING = 'finalizing'
    DONE = 'done'
    FAILED = 'failed'


@dataclass
class PipelineStats:
    """
    Performance statistics of one run
    """
    total_time: float = 0.0
    detection_times: List[float] = field(default_factory=list)
    tracking_times: List[float] = field(default_factory=list)
    render_times: List[float] = field(default_factory=list)

    def summary(self, frames_processed: int) -> Dict[str, float]:
        def _mean(values):
            return float(np.mean(values)) if values else 0.0

        return {
            'total_time': self.total_time,
            'avg_fps': frames_processed / self.total_time if self.total_time > 0 else 0.0,
            'avg_detection_time': _mean(self.detection_times),
            'avg_tracking_time': _mean(self.tracking_times),
            'avg_render_time': _mean(self.render_times),
        }


@dataclass
class PipelineResult:
    """
    Output of one run: vehicle records plus the annotated video, if any
    """
    records: List[VehicleRecord]
    video_path: Optional[str]
    state: PipelineState
    frames_processed: int = 0
    frames_skipped: int = 0
    errors: List[str] = field(default_factory=list)
    stats: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vehicles': [record.to_dict() for record in self.records],
            'video': self.video_path,
            'state': self.state.value,
            'frames_processed': self.frames_processed,
            'frames_skipped': self.frames_skipped,
            'errors': list(self.errors),
            'stats': dict(self.stats),
        }


DecoderFactory = Callable[[Path, Callable[[str], Any]], Any]


class SpeedPipeline:
    """
    Orchestrates decode -> detect -> zone filter -> track -> estimate ->
    draw -> persist for one video at a time, then aggregates per-vehicle
    results and reassembles the annotated video.
    """

    def __init__(self,
                 calibration: Union[Calibration, Dict[str, Any]],
                 detector: Detector,
                 tracker: Tracker,
                 renderer: Optional[AnnotationRenderer] = None,
                 config: Optional[PipelineConfig] = None,
                 tracker_params: Optional[Dict[str, Any]] = None,
                 decoder_factory: Optional[DecoderFactory] = None,
                 encoder: Optional[FFmpegEncoder] = None):
        """
        Args:
            calibration: Calibration object or its dictionary form
            detector: Detection model with detect(image)
            tracker: Tracker implementation, reset at the start of every run
            renderer: Drawing collaborator (render_annotated, crop)
            config: Runtime settings
            tracker_params: Passed to tracker.set_params at every run start
            decoder_factory: Builds a decoder from (video_path, on_progress)
            encoder: Video reassembly collaborator with encode(frames_dir, output_dir)
        """
        self.config = config or PipelineConfig()
        self.calibration = calibration
        self.detector = detector
        self.tracker = tracker
        self.tracker_params = dict(tracker_params or {})
        self.renderer = renderer or AnnotationRenderer(jpeg_quality=self.config.jpeg_quality)
        self.decoder_factory = decoder_factory or self._default_decoder
        self.encoder = encoder or FFmpegEncoder(self.config.ffmpeg_bin, self.config.video_fps)

        self.logger = logging.getLogger(__name__)

        self.state = PipelineState.INIT
        self.correlator = TimestampCorrelator(self.config.assumed_fps)
        self.estimator: Optional[SpeedEstimator] = None
        self.zone_filter: Optional[DetectionZoneFilter] = None
        self.frame_store: Optional[FrameStore] = None
        self.stats = PipelineStats()
        self.errors: List[str] = []
        self.frames_processed = 0
        self.frames_skipped = 0

    def _default_decoder(self, video_path: Path, on_progress: Callable[[str], Any]) -> FFmpegDecoder:
        return FFmpegDecoder(video_path, ffmpeg_bin=self.config.ffmpeg_bin, on_progress=on_progress)

    def _set_state(self, state: PipelineState):
        self.logger.info(f"Pipeline state {self.state.value} -> {state.value}")
        self.state = state

    def run(self,
            video_path: Union[str, Path],
            output_dir: Union[str, Path, None] = None,
            max_frames: Optional[int] = None,
            reference_time: Optional[datetime] = None,
            raise_on_encoder_failure: bool = True) -> PipelineResult:
        """
        Process one video end to end.

        Args:
            video_path: Input video
            output_dir: Where frames, crops and the annotated video go
            max_frames: Stop accepting frames after this many
            reference_time: Wall-clock instant of video time zero for ISO timestamps
            raise_on_encoder_failure: Raise EncoderError (carrying the result) when
                both encoder attempts fail, instead of returning a FAILED result

        Returns:
            PipelineResult with one VehicleRecord per track

        Raises:
            ConfigError: invalid calibration at initialization
            DecoderError: decoder failure or frame buffer overflow; .result holds
                the partial results
            EncoderError: both encoder attempts failed; .result holds the records
        """
        start_time = time.time()
        output_dir = Path(output_dir or self.config.output_dir)

        self._init(output_dir, reference_time)
        decoder = self.decoder_factory(Path(video_path), self.correlator.add_progress)
        try:
            decoder.start()
        except DecoderError as e:
            self._set_state(PipelineState.FAILED)
            self.logger.error(f"Could not start decoder: {e}")
            self._release_frames()
            e.result = self._result(start_time, [], None, [str(e)])
            raise

        parser = JpegFrameParser(max_buffer_bytes=self.config.max_buffer_bytes)
        source = FrameSource(decoder, parser, self.correlator,
                             buffer_size=self.config.frame_queue_size,
                             source_id=Path(video_path).stem)
        aggregator = ResultAggregator(self.renderer, self.frame_store.frame_path,
                                      output_dir / 'vehicles')

        detect_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix='detect')
        writer_pool = ThreadPoolExecutor(max_workers=self.config.writer_threads,
                                         thread_name_prefix='frame-writer')
        pending: Deque[Tuple[Frame, Future]] = deque()
        writes: List[Future] = []

        try:
            self._set_state(PipelineState.STREAMING)
            source.start()
            self._stream(source, detect_pool, writer_pool, pending, writes, max_frames)

            self._set_state(PipelineState.DRAINING)
            while pending:
                self._complete(pending.popleft(), source, writer_pool, writes)
            self._wait_for_writes(writes)

        except DecoderError as e:
            self._set_state(PipelineState.FAILED)
            self.logger.error(f"Stream failed: {e}")
            self.errors.append(str(e))

            for _, future in pending:
                future.cancel()
            pending.clear()
            source.stop()
            writer_pool.shutdown(wait=True)

            records = aggregator.aggregate(self.estimator.samples)
            self._release_frames()
            e.result = self._result(start_time, records, None)
            raise

        except BaseException as e:
            self._set_state(PipelineState.FAILED)
            self.logger.error(f"Pipeline aborted: {e!r}")

            for _, future in pending:
                future.cancel()
            pending.clear()
            source.stop()
            writer_pool.shutdown(wait=True)
            self._release_frames()
            raise

        finally:
            source.stop()
            detect_pool.shutdown(wait=True)
            writer_pool.shutdown(wait=True)

        return self._finalize(start_time, output_dir, aggregator, raise_on_encoder_failure)

    def _init(self, output_dir: Path, reference_time: Optional[datetime]):
        """Validate calibration and wipe every piece of per-run state"""
        self.state = PipelineState.INIT
        self.logger.info("Pipeline state -> init")

        try:
            if not isinstance(self.calibration, Calibration):
                self.calibration = Calibration.from_dict(self.calibration)
        except ConfigError:
            self._set_state(PipelineState.FAILED)
            raise

        self.estimator = SpeedEstimator(self.calibration.pixels_per_meter, reference_time)
        self.zone_filter = DetectionZoneFilter(self.calibration.ignored_areas)
        self.correlator.reset()
        self.tracker.reset()
        if self.tracker_params:
            self.tracker.set_params(self.tracker_params)

        self.frame_store = FrameStore(output_dir)
        self.frame_store.prepare()

        self.stats = PipelineStats()
        self.errors = []
        self.frames_processed = 0
        self.frames_skipped = 0

    def _stream(self,
                source: FrameSource,
                detect_pool: ThreadPoolExecutor,
                writer_pool: ThreadPoolExecutor,
                pending: Deque[Tuple[Frame, Future]],
                writes: List[Future],
                max_frames: Optional[int]):
        """Accept frames until end of stream, completing them in arrival order"""
        accepted = 0
        lookahead = self.config.detection_lookahead

        while True:
            frame = source.get_frame()
            if frame is None:
                break

            pending.append((frame, detect_pool.submit(self._detect, frame)))
            accepted += 1

            while len(pending) >= lookahead:
                self._complete(pending.popleft(), source, writer_pool, writes)

            if max_frames is not None and accepted >= max_frames:
                self.logger.info(f"Reached max_frames={max_frames}, stopping decoder")
                source.stop()
                break

    def _detect(self, frame: Frame) -> List[Dict[str, Any]]:
        start = time.time()
        image = decode_image(frame.data)
        if image is None:
            raise FrameProcessingError(f"Frame {frame.index} is not a decodable image", frame.index)
        raw = self.detector.detect(image)
        self.stats.detection_times.append(time.time() - start)
        return raw

    def _complete(self,
                  item: Tuple[Frame, Future],
                  source: FrameSource,
                  writer_pool: ThreadPoolExecutor,
                  writes: List[Future]):
        """
        Finish one frame. Only ever called from the consumer loop, in index order.

        Raises:
            DecoderError: if the decoder failed; the frame is discarded untracked
        """
        frame, detection = item

        try:
            raw = detection.result()
            source.raise_if_failed()

            detections = normalize_detections(raw, self.config.min_confidence)
            filtered = self.zone_filter.filter(detections)

            t0 = time.time()
            tracks = self.tracker.feed_frame(filtered, frame.index)
            self.stats.tracking_times.append(time.time() - t0)

            samples = self.estimator.update(frame.index, frame.timestamp, tracks, detections)
        except DecoderError:
            raise
        except Exception as e:
            self._skip_frame(frame, e, 'detection/tracking')
            writes.append(writer_pool.submit(self.frame_store.save, frame.index, frame.data))
            return

        speeds = {sample.track_id: sample.speed_kmh for sample in samples}

        try:
            t0 = time.time()
            annotated = self.renderer.render_annotated(
                frame.data, detections, tracks, self.calibration.ignored_areas,
                frame.index, frame.timestamp, speeds,
            )
            self.stats.render_times.append(time.time() - t0)
        except Exception as e:
            self._skip_frame(frame, e, 'drawing')
            annotated = frame.data
        else:
            self.frames_processed += 1

        writes.append(writer_pool.submit(self.frame_store.save, frame.index, annotated))

    def _skip_frame(self, frame: Frame, error: Exception, step: str):
        if not isinstance(error, FrameProcessingError):
            error = FrameProcessingError(f"{step} failed on frame {frame.index}: {error}", frame.index)
        self.logger.warning(f"Skipping frame {frame.index}: {error}")
        self.errors.append(str(error))
        self.frames_skipped += 1

    def _wait_for_writes(self, writes: List[Future]):
        wait(writes)
        for future in writes:
            error = future.exception()
            if error is not None:
                self.logger.error(f"Failed to persist frame: {error}")
                self.errors.append(f"persist failed: {error}")
        writes.clear()

    def _finalize(self,
                  start_time: float,
                  output_dir: Path,
                  aggregator: ResultAggregator,
                  raise_on_encoder_failure: bool) -> PipelineResult:
        """Aggregate while frames are on disk, then encode, then release frames"""
        self._set_state(PipelineState.FINALIZING)

        video_path = None
        encoder_error = None
        try:
            records = aggregator.aggregate(self.estimator.samples)
            video_path = str(self.encoder.encode(self.frame_store.frames_dir, output_dir))
        except EncoderError as e:
            self.logger.error(f"Video reassembly failed: {e}")
            self.errors.append(str(e))
            encoder_error = e
        except BaseException:
            self._set_state(PipelineState.FAILED)
            raise
        finally:
            self._release_frames()

        self._set_state(PipelineState.FAILED if encoder_error else PipelineState.DONE)
        result = self._result(start_time, records, video_path)

        if encoder_error is not None and raise_on_encoder_failure:
            encoder_error.result = result
            raise encoder_error

        self.logger.info(
            f"Processed {self.frames_processed} frames ({self.frames_skipped} skipped), "
            f"{len(records)} vehicles in {result.stats['total_time']:.2f}s"
        )
        return result

    def _release_frames(self):
        if self.config.keep_frames:
            self.logger.info(f"Keeping frames in {self.frame_store.frames_dir}")
            return
        self.frame_store.cleanup()

    def _result(self,
                start_time: float,
                records: List[VehicleRecord],
                video_path: Optional[str],
                errors: Optional[List[str]] = None) -> PipelineResult:
        self.stats.total_time = time.time() - start_time
        return PipelineResult(
            records=records,
            video_path=video_path,
            state=self.state,
            frames_processed=self.frames_processed,
            frames_skipped=self.frames_skipped,
            errors=list(errors if errors is not None else self.errors),
            stats=self.stats.summary(self.frames_processed),
        )


def _save_results(result: PipelineResult, output_dir: Path) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    results_path = output_dir / 'results.json'
    with open(results_path, 'w') as f:
        json.dump(result.to_dict(), f, indent=2)
    return results_path


def main(argv: Optional[List[str]] = None) -> int:
    """Command line interface for speed estimation on a video file"""
    parser = argparse.ArgumentParser(description='Vehicle speed estimation from video')
    parser.add_argument('--source', required=True, help='Input video file')
    parser.add_argument('--config', help='Path to JSON or YAML config file')
    parser.add_argument('--calibration', help='Calibration JSON (overrides the config)')
    parser.add_argument('--output-dir', help='Output directory (overrides the config)')
    parser.add_argument('--max-frames', type=int, help='Maximum frames to process')
    parser.add_argument('--keep-frames', action='store_true', help='Keep annotated frame files')
    parser.add_argument('--log-level', help='Logging level (overrides the config)')

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
        setup_logging(config, args.log_level)

        if args.output_dir:
            config['output']['output_dir'] = args.output_dir
        if args.keep_frames:
            config['output']['keep_frames'] = True

        calibration = Calibration.from_file(args.calibration or config['velocity']['calibration_file'])
        pipeline_config = PipelineConfig.from_dict(config)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1

    pipeline = SpeedPipeline(
        calibration=calibration,
        detector=create_detector(config['detector']),
        tracker=create_tracker(),
        config=pipeline_config,
        tracker_params=config['tracker'],
    )
    output_dir = Path(pipeline_config.output_dir)

    try:
        result = pipeline.run(args.source, output_dir, max_frames=args.max_frames,
                              raise_on_encoder_failure=False)
    except SpeedCamError as e:
        print(f"Error: {e}")
        if e.result is not None:
            print(f"Partial results saved to {_save_results(e.result, output_dir)}")
        return 1

    results_path = _save_results(result, output_dir)

    print(f"\nProcessed {result.frames_processed} frames ({result.frames_skipped} skipped)")
    for record in result.records:
        print(f"  Vehicle {record.id}: {record.speed_kmh} km/h at {record.time_iso}")
    print(f"Annotated video: {result.video_path or 'not created'}")
    print(f"Results saved to {results_path}")

    return 0 if result.state is PipelineState.DONE else 1


if __name__ == "__main__":
    sys.exit(main())
