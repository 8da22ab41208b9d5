"""
Unit tests for the ffmpeg decoder/encoder wrappers and the frame store.
"""

import io
import pytest
import subprocess
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from speedcam.core.video_io import (
    EVEN_PAD_FILTER, FFmpegDecoder, FFmpegEncoder, FrameStore
)
from speedcam.exceptions import DecoderError, EncoderError


def mock_process(stdout: bytes, stderr: bytes = b'', returncode: int = 0) -> MagicMock:
    process = MagicMock()
    process.stdout = io.BytesIO(stdout)
    process.stderr = io.BytesIO(stderr)
    process.wait.return_value = returncode
    process.poll.return_value = returncode
    process.pid = 1234
    return process


@pytest.fixture
def video_file(tmp_path):
    path = tmp_path / "input.mp4"
    path.write_bytes(b'\x00')
    return path


class TestFFmpegDecoder:
    """Test the decode subprocess wrapper"""

    def test_command(self, video_file):
        decoder = FFmpegDecoder(video_file, ffmpeg_bin='/usr/bin/ffmpeg', jpeg_quality=3)

        cmd = decoder.build_command()

        assert cmd[0] == '/usr/bin/ffmpeg'
        assert cmd[cmd.index('-i') + 1] == str(video_file)
        assert cmd[cmd.index('-f') + 1] == 'image2pipe'
        assert cmd[cmd.index('-vcodec') + 1] == 'mjpeg'
        assert cmd[cmd.index('-q:v') + 1] == '3'
        assert cmd[-1] == '-'

    def test_chunks_and_progress(self, video_file):
        """Test stdout is streamed and stderr time marks are reported"""
        marks = []
        stderr = b'frame=    1 fps=0.0 time=00:00:00.50 bitrate=N/A\rframe=    2 time=00:00:01.00 x\n'
        process = mock_process(b'abcdef', stderr)
        decoder = FFmpegDecoder(video_file, chunk_size=4, on_progress=marks.append)

        with patch('speedcam.core.video_io.subprocess.Popen', return_value=process) as popen:
            data = b''.join(decoder.chunks())

        assert data == b'abcdef'
        assert marks == ['00:00:00.50', '00:00:01.00']
        assert decoder.progress_marks == 2
        assert popen.call_args.kwargs['stdout'] == subprocess.PIPE

    def test_non_zero_exit_raises(self, video_file):
        process = mock_process(b'', b'Invalid data found when processing input\n', returncode=1)
        decoder = FFmpegDecoder(video_file)

        with patch('speedcam.core.video_io.subprocess.Popen', return_value=process):
            with pytest.raises(DecoderError, match='Invalid data'):
                list(decoder.chunks())

    def test_stopped_decoder_does_not_raise(self, video_file):
        """Test termination requested by the pipeline is not a failure"""
        process = mock_process(b'abc', returncode=-15)
        decoder = FFmpegDecoder(video_file)

        with patch('speedcam.core.video_io.subprocess.Popen', return_value=process):
            decoder.start()
            decoder.stop()
            assert list(decoder.chunks()) == [b'abc']

    def test_missing_input(self, tmp_path):
        with pytest.raises(DecoderError, match='not found'):
            FFmpegDecoder(tmp_path / "absent.mp4").start()

    def test_missing_binary(self, video_file):
        decoder = FFmpegDecoder(video_file, ffmpeg_bin='no-such-ffmpeg')

        with patch('speedcam.core.video_io.subprocess.Popen', side_effect=FileNotFoundError()):
            with pytest.raises(DecoderError, match='no-such-ffmpeg'):
                decoder.start()

    def test_stop_terminates_running_process(self, video_file):
        process = mock_process(b'')
        process.poll.return_value = None
        decoder = FFmpegDecoder(video_file)

        with patch('speedcam.core.video_io.subprocess.Popen', return_value=process):
            decoder.start()
            decoder.stop()

        process.terminate.assert_called_once()

    def test_stop_kills_after_timeout(self, video_file):
        process = mock_process(b'')
        process.poll.return_value = None
        process.wait.side_effect = [subprocess.TimeoutExpired('ffmpeg', 2), 0]
        decoder = FFmpegDecoder(video_file)

        with patch('speedcam.core.video_io.subprocess.Popen', return_value=process):
            decoder.start()
            decoder.stop()

        process.kill.assert_called_once()


class TestFrameStore:
    """Test on-disk frame naming and lifecycle"""

    def test_names_and_save(self, tmp_path):
        store = FrameStore(tmp_path)
        store.prepare()

        path = store.save(7, b'jpeg')

        assert path.name == 'frame_000007.jpg'
        assert store.exists(7)
        assert store.count() == 1

    def test_prepare_removes_previous_run(self, tmp_path):
        store = FrameStore(tmp_path)
        store.prepare()
        store.save(0, b'old')

        store.prepare()

        assert store.count() == 0

    def test_cleanup(self, tmp_path):
        store = FrameStore(tmp_path)
        store.prepare()
        store.save(0, b'x')

        store.cleanup()
        store.cleanup()

        assert not store.frames_dir.exists()


class TestFFmpegEncoder:
    """Test reassembly with the mpeg4 fallback"""

    @pytest.fixture
    def frames_dir(self, tmp_path):
        store = FrameStore(tmp_path)
        store.prepare()
        store.save(0, b'a')
        store.save(1, b'b')
        return store.frames_dir

    def test_commands_pad_to_even_size(self, tmp_path):
        encoder = FFmpegEncoder(fps=25)

        primary = encoder.primary_command(tmp_path, tmp_path / 'out.mp4')
        fallback = encoder.fallback_command(tmp_path, tmp_path / 'out.mp4')

        assert 'libx264' in primary
        assert 'mpeg4' in fallback
        assert EVEN_PAD_FILTER in primary and EVEN_PAD_FILTER in fallback
        assert primary[primary.index('-framerate') + 1] == '25'
        assert primary[primary.index('-i') + 1].endswith('frame_%06d.jpg')

    def test_primary_success(self, frames_dir, tmp_path):
        ok = subprocess.CompletedProcess([], 0, '', '')

        with patch('speedcam.core.video_io.subprocess.run', return_value=ok) as run:
            video = FFmpegEncoder().encode(frames_dir, tmp_path / 'out')

        assert video == tmp_path / 'out' / 'annotated.mp4'
        assert run.call_count == 1

    def test_fallback_after_primary_failure(self, frames_dir, tmp_path):
        results = [
            subprocess.CompletedProcess([], 1, '', 'Unknown encoder libx264'),
            subprocess.CompletedProcess([], 0, '', ''),
        ]

        with patch('speedcam.core.video_io.subprocess.run', side_effect=results) as run:
            video = FFmpegEncoder().encode(frames_dir, tmp_path / 'out')

        assert video.name == 'annotated_fallback.mp4'
        assert 'mpeg4' in run.call_args_list[1].args[0]

    def test_both_attempts_fail(self, frames_dir, tmp_path):
        failed = subprocess.CompletedProcess([], 1, '', 'encoder error')

        with patch('speedcam.core.video_io.subprocess.run', return_value=failed):
            with pytest.raises(EncoderError):
                FFmpegEncoder().encode(frames_dir, tmp_path / 'out')

    def test_missing_binary_is_encoder_error(self, frames_dir, tmp_path):
        with patch('speedcam.core.video_io.subprocess.run', side_effect=FileNotFoundError()):
            with pytest.raises(EncoderError):
                FFmpegEncoder(ffmpeg_bin='no-such-ffmpeg').encode(frames_dir, tmp_path / 'out')

    def test_no_frames(self, tmp_path):
        empty = tmp_path / 'frames'
        empty.mkdir()

        with pytest.raises(EncoderError, match='No frames'):
            FFmpegEncoder().encode(empty, tmp_path / 'out')


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
