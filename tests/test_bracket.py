"""Tests for the exposure bracket controller and bracket sessions."""

from pathlib import Path

import pytest

from tests.helpers import FakeCamera, FakeCodec, assert_implements_protocol
from viewfinder.devices.bracket import (
    BracketController,
    BracketPlan,
    BracketSession,
    StillCapture,
)
from viewfinder.devices.exposure import ExposureControl, ExposureRange
from viewfinder.errors import BracketCancelledError


def _controller(camera: FakeCamera, codec: FakeCodec, **kwargs) -> BracketController:
    return BracketController(ExposureControl(camera), camera, codec=codec, **kwargs)


class TestBracketPlan:
    """Tests for BracketPlan."""

    def test_default_offsets(self):
        """Verifies the default plan is -2, 0, +2."""
        assert BracketPlan().offsets == (-2, 0, 2)
        assert len(BracketPlan()) == 3

    def test_targets_clamp_independently(self):
        """Verifies each offset is clamped on its own and duplicates are kept."""
        plan = BracketPlan((-2, -1, 0, 1, 2))
        assert plan.targets(ExposureRange(-1, 1), 0) == [-1, -1, 0, 1, 1]

    def test_targets_relative_to_neutral(self):
        """Verifies offsets are applied to the neutral index."""
        assert BracketPlan().targets(ExposureRange(-4, 4), 1) == [-1, 1, 3]

    def test_targets_clamp_after_adding_offset(self):
        """Verifies a range excluding neutral clamps neutral + offset."""
        assert BracketPlan().targets(ExposureRange(1, 3), 0) == [1, 1, 2]
        assert BracketPlan().targets(ExposureRange(-6, -3), 0) == [-3, -3, -3]

    def test_empty_plan_rejected(self):
        """Verifies a plan needs at least one offset."""
        with pytest.raises(ValueError):
            BracketPlan(())


class TestBracketSession:
    """Tests for BracketSession lifecycle."""

    def test_staging_dir_removed_on_close(self, staging_root):
        """Verifies closing removes the staging directory and its files."""
        session = BracketSession(staging_root)
        path = session.staging_path()
        path.write_text("x")

        session.close()

        assert not session.staging_dir.exists()
        assert list(staging_root.iterdir()) == []
        assert session.closed

    def test_staging_paths_are_unique(self, staging_root):
        """Verifies staging paths follow cap_<n>.jpg and never repeat."""
        with BracketSession(staging_root) as session:
            names = [session.staging_path().name for _ in range(3)]
        assert names == ["cap_0.jpg", "cap_1.jpg", "cap_2.jpg"]

    def test_closed_session_refuses_paths(self, staging_root):
        """Verifies no staging path is handed out after close."""
        session = BracketSession(staging_root)
        session.close()
        session.close()
        with pytest.raises(RuntimeError):
            session.staging_path()

    def test_cancel(self, staging_root):
        """Verifies cancel() sets the flag and raise_if_cancelled() raises."""
        with BracketSession(staging_root) as session:
            session.raise_if_cancelled()
            session.cancel()
            assert session.cancelled
            with pytest.raises(BracketCancelledError):
                session.raise_if_cancelled()

    def test_separate_sessions_do_not_share_staging(self, staging_root):
        """Verifies two sessions get distinct directories."""
        with BracketSession(staging_root) as a, BracketSession(staging_root) as b:
            assert a.staging_dir != b.staging_dir
            assert a.session_id != b.session_id


class TestCaptureBracket:
    """Tests for BracketController.capture_bracket()."""

    def test_fake_camera_is_still_capture(self, fake_camera):
        """Verifies the fake satisfies StillCapture."""
        assert_implements_protocol(fake_camera, StillCapture)

    def test_narrow_range_clamps_plan(self, fake_camera, fake_codec, staging_root):
        """Verifies (-2, 0, +2) against [-1, 1] shoots -1, 0, +1 then restores 0.

        Arrangement:
        1. Fake camera with range [-1, 1].
        2. Default plan.

        Action:
        Captures a bracket.

        Assertion Strategy:
        - Actuator history is [-1, 0, 1, 0].
        - Three images with ev_index -1, 0, 1 in order.
        """
        controller = _controller(fake_camera, fake_codec)

        with BracketSession(staging_root) as session:
            images = controller.capture_bracket(session)

        assert fake_camera.history == [-1, 0, 1, 0]
        assert [img.ev_index for img in images] == [-1, 0, 1]
        assert fake_camera.index == 0

    def test_failed_shot_dropped_and_exposure_restored(self, fake_codec, staging_root):
        """Verifies the +1 failure drops that shot and neutral is still restored.

        Arrangement:
        1. Camera with range [-1, 1] failing at index 1.

        Action:
        Captures a bracket.

        Assertion Strategy:
        - Two images remain (-1 and 0).
        - Last actuator command is 0.
        """
        camera = FakeCamera(ExposureRange(-1, 1), fail_indices={1})
        controller = _controller(camera, fake_codec)

        with BracketSession(staging_root) as session:
            images = controller.capture_bracket(session)

        assert [img.ev_index for img in images] == [-1, 0]
        assert camera.history[-1] == 0
        assert camera.index == 0

    def test_all_shots_fail(self, fake_codec, staging_root):
        """Verifies an all-failed bracket returns an empty list."""
        camera = FakeCamera(ExposureRange(-1, 1), fail_indices={-1, 0, 1})

        with BracketSession(staging_root) as session:
            images = _controller(camera, fake_codec).capture_bracket(session)

        assert images == []
        assert camera.history[-1] == 0

    def test_decode_failure_drops_shot(self, staging_root):
        """Verifies a shot that cannot be decoded is dropped, not retried."""

        class CorruptingCamera(FakeCamera):
            def capture_still(self, destination: Path) -> None:
                super().capture_still(destination)
                if self.index == 0:
                    destination.write_text("corrupt")

        camera = CorruptingCamera()
        with BracketSession(staging_root) as session:
            images = _controller(camera, FakeCodec()).capture_bracket(session)

        assert [img.ev_index for img in images] == [-1, 1]
        assert len(camera.written) == 3

    def test_staging_files_removed_after_each_shot(self, fake_camera, fake_codec, staging_root):
        """Verifies staging files are gone once the bracket returns."""
        with BracketSession(staging_root) as session:
            _controller(fake_camera, fake_codec).capture_bracket(session)
            assert list(session.staging_dir.iterdir()) == []
            assert all(not p.exists() for p in fake_camera.written)

    def test_no_exposure_range_sends_no_commands(self, fake_codec, staging_root):
        """Verifies a device without exposure compensation is never commanded.

        Arrangement:
        1. Camera reporting exposure_range() None.

        Action:
        Captures a bracket.

        Assertion Strategy:
        - Actuator history is empty.
        - Every shot is still taken at the current exposure.
        - ev_index of the images is None.
        """
        camera = FakeCamera(None)

        with BracketSession(staging_root) as session:
            images = _controller(camera, fake_codec).capture_bracket(session)

        assert camera.history == []
        assert len(images) == 3
        assert all(img.ev_index is None for img in images)

    def test_range_excluding_neutral(self, fake_codec, staging_root):
        """Verifies offsets are added to the raw neutral before clamping.

        Arrangement:
        1. Camera with range [1, 3], which excludes neutral 0.

        Action:
        Captures the default bracket.

        Assertion Strategy:
        - Targets are clamp(-2), clamp(0), clamp(2) = 1, 1, 2.
        - Restore goes to clamp(0) = 1.
        """
        camera = FakeCamera(ExposureRange(1, 3))
        controller = _controller(camera, fake_codec)

        with BracketSession(staging_root) as session:
            controller.capture_bracket(session)

        assert camera.history == [1, 1, 2, 1]

    def test_cancel_mid_bracket(self, fake_camera, fake_codec, staging_root):
        """Verifies cancelling stops further shots, restores and cleans up.

        Arrangement:
        1. Camera whose first capture cancels the session.

        Action:
        Captures a bracket.

        Assertion Strategy:
        - BracketCancelledError is raised.
        - Only one shot was attempted.
        - Neutral exposure restored.
        - Staging directory empty.
        """
        controller = _controller(fake_camera, fake_codec)

        with BracketSession(staging_root) as session:
            fake_camera.on_capture = session.cancel
            with pytest.raises(BracketCancelledError):
                controller.capture_bracket(session)
            assert list(session.staging_dir.iterdir()) == []

        assert len(fake_camera.written) == 1
        assert fake_camera.history == [-1, 0]

    def test_control_held_during_bracket(self, fake_camera, fake_codec, staging_root):
        """Verifies ad-hoc exposure changes are refused while shooting."""
        control = ExposureControl(fake_camera)
        controller = BracketController(control, fake_camera, codec=fake_codec)
        refused = []
        fake_camera.on_capture = lambda: refused.append(control.set_index(4))

        with BracketSession(staging_root) as session:
            controller.capture_bracket(session)

        assert refused == [False, False, False]
        assert control.set_index(0) is True

    def test_closed_session_rejected(self, fake_camera, fake_codec, staging_root):
        """Verifies a closed session cannot be reused."""
        session = BracketSession(staging_root)
        session.close()
        with pytest.raises(RuntimeError):
            _controller(fake_camera, fake_codec).capture_bracket(session)
        assert fake_camera.history == []
