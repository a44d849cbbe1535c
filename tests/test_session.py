"""Tests for the recording session state machine."""
import threading
from pathlib import Path

import pytest

from db.models import RecordingStatus
from errors import CaptureError, ConflictError, NotRecordingError
from recorder.session import RecordingSessionManager, SessionState


@pytest.fixture
def recordings_dir(tmp_path):
    return tmp_path / "recordings"


@pytest.fixture
def sessions(recording_store, fake_capture, recordings_dir):
    return RecordingSessionManager(recording_store, fake_capture, recordings_dir)


class TestStartStop:
    def test_start_creates_recording_row(self, sessions, recording_store, fake_capture):
        recording_id = sessions.start()

        assert sessions.state is SessionState.RECORDING
        assert sessions.is_recording()
        assert sessions.current_recording_id == recording_id
        rec = recording_store.get(recording_id)
        assert rec.status is RecordingStatus.RECORDING
        assert rec.filename.startswith("recording_")
        assert rec.filename.endswith(f"_{recording_id}.wav")
        assert fake_capture.started == [Path(rec.file_path)]

    def test_stop_finalizes_recording(self, sessions, fake_capture):
        recording_id = sessions.start()
        rec = sessions.stop()

        assert rec.id == recording_id
        assert rec.status is RecordingStatus.COMPLETED
        assert rec.duration == fake_capture.seconds
        assert rec.file_size == Path(rec.file_path).stat().st_size
        assert sessions.state is SessionState.IDLE
        assert sessions.current_recording_id is None

    def test_duration_probed_from_file_when_backend_reports_none(self, sessions, fake_capture):
        fake_capture.stop = lambda: None
        sessions.start()
        assert sessions.stop().duration == pytest.approx(fake_capture.seconds)

    def test_double_start_conflicts(self, sessions, recording_store):
        first = sessions.start()
        with pytest.raises(ConflictError):
            sessions.start()
        assert sessions.state is SessionState.RECORDING
        assert sessions.current_recording_id == first
        assert recording_store.count() == 1

    def test_concurrent_start_admits_one(self, sessions, recording_store):
        outcomes = []
        barrier = threading.Barrier(5)

        def worker():
            barrier.wait()
            try:
                outcomes.append(sessions.start())
            except ConflictError as e:
                outcomes.append(e)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(isinstance(o, str) for o in outcomes) == 1
        assert recording_store.count() == 1

    def test_concurrent_start_fails_fast_while_device_opens(self, recording_store, recordings_dir):
        opening = threading.Event()
        release = threading.Event()

        class SlowCapture:
            def start(self, output_path):
                opening.set()
                release.wait(timeout=5)
                Path(output_path).write_bytes(b"")

            def stop(self):
                return 1.0

        sessions = RecordingSessionManager(recording_store, SlowCapture(), recordings_dir)
        started = []
        thread = threading.Thread(target=lambda: started.append(sessions.start()))
        thread.start()
        assert opening.wait(timeout=5)

        assert sessions.state is SessionState.STARTING
        with pytest.raises(ConflictError):
            sessions.start()
        with pytest.raises(NotRecordingError):
            sessions.stop()
        with pytest.raises(ConflictError):
            sessions.delete_recording(sessions.current_recording_id)
        assert not release.is_set()

        release.set()
        thread.join(timeout=5)
        assert started == [sessions.current_recording_id]
        assert sessions.state is SessionState.RECORDING
        assert recording_store.count() == 1

    def test_stop_when_idle(self, sessions):
        with pytest.raises(NotRecordingError):
            sessions.stop()
        assert sessions.state is SessionState.IDLE

    def test_back_to_back_sessions(self, sessions, recording_store):
        first = sessions.start()
        sessions.stop()
        second = sessions.start()
        sessions.stop()
        assert first != second
        assert recording_store.count() == 2


class TestFailures:
    def test_capture_start_failure(self, recording_store, recordings_dir):
        class BrokenCapture:
            def start(self, output_path):
                raise OSError("no input device")

            def stop(self):
                return None

        sessions = RecordingSessionManager(recording_store, BrokenCapture(), recordings_dir)
        with pytest.raises(CaptureError):
            sessions.start()
        assert sessions.state is SessionState.IDLE
        assert recording_store.count() == 0

    def test_finalize_failure_marks_failed(self, sessions, recording_store, fake_capture):
        fake_capture.fail_on_stop = True
        recording_id = sessions.start()

        with pytest.raises(CaptureError):
            sessions.stop()

        rec = recording_store.get(recording_id)
        assert rec.status is RecordingStatus.FAILED
        assert "device lost" in rec.error_message
        assert sessions.state is SessionState.IDLE
        assert sessions.current_recording_id is None

    def test_interrupted_recordings_failed_on_startup(self, recording_store, fake_capture, recordings_dir):
        first = RecordingSessionManager(recording_store, fake_capture, recordings_dir)
        recording_id = first.start()

        RecordingSessionManager(recording_store, fake_capture, recordings_dir)
        rec = recording_store.get(recording_id)
        assert rec.status is RecordingStatus.FAILED
        assert rec.error_message == "interrupted"


class TestDelete:
    def test_delete_removes_file_and_row(self, sessions, recording_store):
        sessions.start()
        rec = sessions.stop()

        assert sessions.delete_recording(rec.id) is True
        assert not Path(rec.file_path).exists()
        assert recording_store.get(rec.id) is None
        assert sessions.delete_recording(rec.id) is False

    def test_delete_active_recording_conflicts(self, sessions, recording_store):
        recording_id = sessions.start()
        with pytest.raises(ConflictError):
            sessions.delete_recording(recording_id)
        assert recording_store.get(recording_id) is not None
        assert sessions.is_recording()

    def test_delete_when_file_already_gone(self, sessions, recording_store):
        sessions.start()
        rec = sessions.stop()
        Path(rec.file_path).unlink()
        assert sessions.delete_recording(rec.id) is True

    def test_shutdown_stops_active_recording(self, sessions, recording_store):
        recording_id = sessions.start()
        sessions.shutdown()
        assert sessions.state is SessionState.IDLE
        assert recording_store.get(recording_id).status is RecordingStatus.COMPLETED
