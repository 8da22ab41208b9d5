"""
FFmpeg subprocesses for decoding a video into an MJPEG byte stream and for
reassembling annotated frames into a video, plus the on-disk frame store.
"""

import logging
import re
import shutil
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Union

from ..exceptions import DecoderError, EncoderError


logger = logging.getLogger(__name__)

PROGRESS_RE = re.compile(r'time=\s*(\d+:\d+:\d+(?:\.\d+)?)')
FRAME_PATTERN = 'frame_%06d.jpg'
EVEN_PAD_FILTER = 'pad=ceil(iw/2)*2:ceil(ih/2)*2'


class FFmpegDecoder:
    """
    Runs ffmpeg to turn a video file into concatenated JPEG images on stdout.
    Progress marks ("HH:MM:SS.ms") parsed from stderr are passed to on_progress.
    """

    def __init__(self,
                 video_path: Union[str, Path],
                 ffmpeg_bin: str = 'ffmpeg',
                 chunk_size: int = 64 * 1024,
                 jpeg_quality: int = 2,
                 on_progress: Optional[Callable[[str], None]] = None):
        """
        Args:
            video_path: Input video file
            ffmpeg_bin: ffmpeg executable
            chunk_size: Maximum bytes returned per stdout read
            jpeg_quality: ffmpeg -q:v value for the MJPEG stream (2 is best)
            on_progress: Called from the stderr reader thread with each time mark
        """
        self.video_path = Path(video_path)
        self.ffmpeg_bin = ffmpeg_bin
        self.chunk_size = chunk_size
        self.jpeg_quality = jpeg_quality
        self.on_progress = on_progress

        self.process: Optional[subprocess.Popen] = None
        self._stderr_thread: Optional[threading.Thread] = None
        self._stderr_tail: deque = deque(maxlen=20)
        self._stopped = threading.Event()
        self.progress_marks = 0

    def build_command(self) -> List[str]:
        return [
            self.ffmpeg_bin,
            '-hide_banner',
            '-nostdin',
            '-i', str(self.video_path),
            '-an',
            '-f', 'image2pipe',
            '-vcodec', 'mjpeg',
            '-q:v', str(self.jpeg_quality),
            '-',
        ]

    def start(self):
        """
        Spawn the decoder process.

        Raises:
            DecoderError: if the input is missing or ffmpeg cannot be started
        """
        if not self.video_path.exists():
            raise DecoderError(f"Video file not found: {self.video_path}")

        cmd = self.build_command()
        logger.info(f"FFmpeg decode command: {' '.join(cmd)}")
        self._stopped.clear()
        try:
            self.process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise DecoderError(f"FFmpeg binary not found: {self.ffmpeg_bin}") from e
        except OSError as e:
            raise DecoderError(f"Failed to start FFmpeg: {e}") from e

        self._stderr_thread = threading.Thread(target=self._read_stderr, daemon=True)
        self._stderr_thread.start()
        logger.info(f"FFmpeg decoder started (pid={self.process.pid}) for {self.video_path.name}")

    def _read_stderr(self):
        """Collect progress marks and keep the tail of stderr for error reports"""
        stream = self.process.stderr
        pending = ''
        while True:
            data = stream.read1(4096) if hasattr(stream, 'read1') else stream.read(4096)
            if not data:
                break
            pending += data.decode('utf-8', errors='replace')
            # ffmpeg separates stats updates with carriage returns
            lines = re.split(r'[\r\n]', pending)
            pending = lines.pop()
            for line in lines:
                self._handle_stderr_line(line)
        if pending:
            self._handle_stderr_line(pending)
        stream.close()

    def _handle_stderr_line(self, line: str):
        line = line.strip()
        if not line:
            return
        self._stderr_tail.append(line)
        match = PROGRESS_RE.search(line)
        if match:
            self.progress_marks += 1
            if self.on_progress:
                self.on_progress(match.group(1))

    def chunks(self) -> Iterator[bytes]:
        """
        Yield raw stdout chunks until the decoder finishes.

        Raises:
            DecoderError: if ffmpeg exits with a non-zero status
        """
        if self.process is None:
            self.start()

        stdout = self.process.stdout
        try:
            while True:
                data = stdout.read1(self.chunk_size) if hasattr(stdout, 'read1') else stdout.read(self.chunk_size)
                if not data:
                    break
                yield data
        finally:
            stdout.close()

        returncode = self.process.wait()
        if self._stderr_thread:
            self._stderr_thread.join(timeout=5)

        if returncode != 0 and not self._stopped.is_set():
            tail = ' | '.join(self._stderr_tail)
            raise DecoderError(f"FFmpeg exited with status {returncode}: {tail}")

        logger.info(f"FFmpeg decoder finished ({self.progress_marks} progress marks)")

    def stop(self):
        """Terminate the decoder process if it is still running"""
        self._stopped.set()
        if not self.process:
            return
        try:
            if self.process.poll() is None:
                self.process.terminate()
                self.process.wait(timeout=2)
        except subprocess.TimeoutExpired:
            self.process.kill()
            self.process.wait(timeout=2)


class FrameStore:
    """
    Annotated frames on disk, named by zero-padded frame index.
    """

    def __init__(self, output_dir: Union[str, Path], subdir: str = 'frames'):
        self.output_dir = Path(output_dir)
        self.frames_dir = self.output_dir / subdir

    def prepare(self):
        """Create an empty frames directory, removing leftovers of earlier runs"""
        if self.frames_dir.exists():
            shutil.rmtree(self.frames_dir)
        self.frames_dir.mkdir(parents=True, exist_ok=True)

    def frame_path(self, frame_index: int) -> Path:
        return self.frames_dir / (FRAME_PATTERN % frame_index)

    def save(self, frame_index: int, data: bytes) -> Path:
        path = self.frame_path(frame_index)
        path.write_bytes(data)
        return path

    def exists(self, frame_index: int) -> bool:
        return self.frame_path(frame_index).exists()

    def count(self) -> int:
        if not self.frames_dir.exists():
            return 0
        return sum(1 for _ in self.frames_dir.glob('frame_*.jpg'))

    def cleanup(self):
        """Remove the frames directory"""
        if not self.frames_dir.exists():
            return
        try:
            shutil.rmtree(self.frames_dir)
            logger.info(f"Removed frames directory {self.frames_dir}")
        except OSError as e:
            logger.warning(f"Could not clean up frames directory {self.frames_dir}: {e}")


class FFmpegEncoder:
    """
    Reassembles numbered frames into a video. The primary H.264 encode falls
    back once to MPEG-4 before giving up.
    """

    def __init__(self, ffmpeg_bin: str = 'ffmpeg', fps: float = 30.0):
        self.ffmpeg_bin = ffmpeg_bin
        self.fps = fps

    def _input_args(self, frames_dir: Path) -> List[str]:
        return [
            self.ffmpeg_bin, '-y', '-loglevel', 'error',
            '-framerate', f"{self.fps:g}",
            '-start_number', '0',
            '-i', str(frames_dir / FRAME_PATTERN),
        ]

    def primary_command(self, frames_dir: Path, output_path: Path) -> List[str]:
        return self._input_args(frames_dir) + [
            '-c:v', 'libx264',
            '-vf', EVEN_PAD_FILTER,
            '-pix_fmt', 'yuv420p',
            '-crf', '23',
            '-preset', 'medium',
            str(output_path),
        ]

    def fallback_command(self, frames_dir: Path, output_path: Path) -> List[str]:
        return self._input_args(frames_dir) + [
            '-vcodec', 'mpeg4',
            '-vf', EVEN_PAD_FILTER,
            '-q:v', '5',
            str(output_path),
        ]

    def encode(self,
               frames_dir: Union[str, Path],
               output_dir: Union[str, Path],
               video_name: str = 'annotated.mp4',
               fallback_name: str = 'annotated_fallback.mp4') -> Path:
        """
        Encode frames_dir into a video inside output_dir.

        Returns:
            Path of the written video

        Raises:
            EncoderError: if there are no frames or both encoder attempts fail
        """
        frames_dir = Path(frames_dir)
        output_dir = Path(output_dir)

        if not frames_dir.exists() or not any(frames_dir.glob('frame_*.jpg')):
            raise EncoderError(f"No frames found to create video in {frames_dir}")

        output_dir.mkdir(parents=True, exist_ok=True)
        primary_path = output_dir / video_name
        error = self._run(self.primary_command(frames_dir, primary_path))
        if error is None:
            logger.info(f"Annotated video created: {primary_path}")
            return primary_path

        logger.warning(f"Primary video creation failed ({error}), trying fallback")
        fallback_path = output_dir / fallback_name
        fallback_error = self._run(self.fallback_command(frames_dir, fallback_path))
        if fallback_error is None:
            logger.info(f"Fallback video created: {fallback_path}")
            return fallback_path

        logger.error(f"Both video creation methods failed: {fallback_error}")
        raise EncoderError(f"Video encoding failed: {error}; fallback: {fallback_error}")

    def _run(self, cmd: List[str]) -> Optional[str]:
        """Run one ffmpeg command, returning an error description or None"""
        logger.info(f"FFmpeg encode command: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except FileNotFoundError:
            return f"FFmpeg binary not found: {self.ffmpeg_bin}"
        except OSError as e:
            return str(e)

        if result.returncode != 0:
            stderr = (result.stderr or '').strip().splitlines()
            return f"exit status {result.returncode}: {' | '.join(stderr[-5:])}"
        return None
