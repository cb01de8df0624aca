"""
Tests for the LifecycleController state machine.
"""

import asyncio

import pytest

from conftest import ScriptedDetector
from livedetect.camera.capture_session import CaptureSession, CaptureState, FlashState
from livedetect.camera.media import SimulatedMediaDevices
from livedetect.camera.overlay import BACKGROUND_COLOR
from livedetect.camera.snapshot import Snapshot
from livedetect.errors import ErrorKind
from livedetect.inference.detection import DisplayMode
from livedetect.main import CommandResult, LifecycleController, ModelState


def make_controller(media=None, origin="http://localhost", detector=None):
    session = CaptureSession(
        media or SimulatedMediaDevices(resolution=(320, 240)),
        origin=origin,
        ready_timeout=1.0,
    )
    return LifecycleController(
        session=session,
        detector=detector or ScriptedDetector(),
        animal_classes={"dog", "cat", "bird"},
        loop_interval=0.01,
        loop_stop_timeout=1.0,
    )


async def ready(controller: LifecycleController) -> LifecycleController:
    result = await controller.load_model()
    assert result.success
    return controller


class TestModelLoading:
    """Tests for model load gating."""

    def test_initial_state(self, controller):
        assert controller.capture_state is CaptureState.OFF
        assert controller.flash_state is FlashState.UNSUPPORTED
        assert controller.display_mode is DisplayMode.ALL
        assert controller.model_state is ModelState.NOT_LOADED
        assert controller.camera_toggle_enabled is False
        assert controller.status_message == "Loading model..."

    @pytest.mark.asyncio
    async def test_load_enables_camera(self, controller):
        result = await controller.load_model()
        assert result.success
        assert controller.model_state is ModelState.READY
        assert controller.camera_toggle_enabled is True
        assert controller.status_message == "Model loaded. Camera is off."

    @pytest.mark.asyncio
    async def test_load_failure(self):
        controller = make_controller(detector=ScriptedDetector(fail_load=True))
        result = await controller.load_model()
        assert not result.success
        assert result.error is ErrorKind.MODEL_NOT_LOADED
        assert controller.model_state is ModelState.FAILED
        assert controller.camera_toggle_enabled is False
        assert controller.status_message == "Failed to load model. Please restart."

    @pytest.mark.asyncio
    async def test_camera_refused_before_model(self, controller, media):
        result = await controller.toggle_camera()
        assert not result.success
        assert result.error is ErrorKind.MODEL_NOT_LOADED
        assert controller.capture_state is CaptureState.OFF
        assert media.requests == []


class TestCameraToggle:
    """Tests for toggle_camera."""

    @pytest.mark.asyncio
    async def test_toggle_on(self, controller):
        await ready(controller)
        result = await controller.toggle_camera()

        assert result.success
        assert controller.capture_state is CaptureState.ON
        assert controller.loop.is_running
        assert controller.surface.size == (320, 240)
        assert controller.flash_state is FlashState.OFF
        assert controller.flash_enabled is True
        assert controller.status_message == "Camera on. Detecting objects..."

        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_toggle_off(self, controller, media):
        await ready(controller)
        await controller.toggle_camera()
        result = await controller.toggle_camera()

        assert result.success
        assert controller.capture_state is CaptureState.OFF
        assert not controller.loop.is_running
        assert controller.flash_state is FlashState.UNSUPPORTED
        assert controller.flash_enabled is False
        assert media.tracks[0].ready_state == "ended"
        assert tuple(controller.surface.to_array()[10, 10]) == BACKGROUND_COLOR
        assert controller.status_message == "Camera off."

    @pytest.mark.asyncio
    async def test_loop_renders_after_start(self, controller, detector):
        await ready(controller)
        await controller.toggle_camera()
        for _ in range(200):
            if controller.loop.get_status()["rendered"]:
                break
            await asyncio.sleep(0.01)
        assert detector.calls >= 1
        assert controller.loop.last_pass is not None
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_permission_denied_stays_off(self):
        controller = await ready(make_controller(SimulatedMediaDevices(permission_granted=False)))
        result = await controller.toggle_camera()

        assert not result.success
        assert result.error is ErrorKind.PERMISSION_DENIED
        assert controller.capture_state is CaptureState.OFF
        assert not controller.loop.is_running
        assert controller.flash_state is FlashState.UNSUPPORTED
        assert controller.status_message == (
            "Could not access your camera. Please ensure permissions are granted."
        )

    @pytest.mark.asyncio
    async def test_insecure_origin(self):
        controller = await ready(make_controller(origin="http://192.168.1.5"))
        result = await controller.toggle_camera()
        assert result.error is ErrorKind.NOT_SECURE_CONTEXT
        assert controller.capture_state is CaptureState.OFF

    @pytest.mark.asyncio
    async def test_back_camera_missing_falls_back(self):
        media = SimulatedMediaDevices(facing_modes=("user",), resolution=(320, 240))
        controller = await ready(make_controller(media))
        result = await controller.toggle_camera()
        assert result.success
        assert controller.capture_state is CaptureState.ON
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_concurrent_toggles_apply_in_order(self, controller):
        await ready(controller)
        first, second = await asyncio.gather(
            controller.toggle_camera(), controller.toggle_camera()
        )
        assert first.message == "Camera started"
        assert second.message == "Camera stopped"
        assert controller.capture_state is CaptureState.OFF
        assert not controller.loop.is_running

    @pytest.mark.asyncio
    async def test_restart(self, controller, media):
        await ready(controller)
        for _ in range(2):
            await controller.toggle_camera()
            await controller.toggle_camera()
        assert controller.capture_state is CaptureState.OFF
        assert len(media.tracks) == 2
        assert all(t.ready_state == "ended" for t in media.tracks)


class TestFlash:
    """Tests for toggle_flash."""

    @pytest.mark.asyncio
    async def test_flash_when_camera_off(self, controller):
        await ready(controller)
        result = await controller.toggle_flash()
        assert result.error is ErrorKind.TORCH_UNSUPPORTED
        assert controller.flash_state is FlashState.UNSUPPORTED

    @pytest.mark.asyncio
    async def test_flash_unsupported_device(self):
        media = SimulatedMediaDevices(resolution=(320, 240), torch_supported=False)
        controller = await ready(make_controller(media))
        await controller.toggle_camera()

        assert controller.flash_state is FlashState.UNSUPPORTED
        assert controller.flash_enabled is False
        result = await controller.toggle_flash()
        assert result.error is ErrorKind.TORCH_UNSUPPORTED
        assert media.tracks[0].constraint_log == []
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_flash_toggle(self, controller, media):
        await ready(controller)
        await controller.toggle_camera()

        result = await controller.toggle_flash()
        assert result.success
        assert controller.flash_state is FlashState.ON
        assert media.tracks[0].torch is True

        result = await controller.toggle_flash()
        assert result.success
        assert controller.flash_state is FlashState.OFF
        assert media.tracks[0].torch is False
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_flash_failure_disables_control(self):
        media = SimulatedMediaDevices(resolution=(320, 240), fail_torch=True)
        controller = await ready(make_controller(media))
        await controller.toggle_camera()
        assert controller.flash_enabled is True

        result = await controller.toggle_flash()

        assert not result.success
        assert result.error is ErrorKind.TORCH_CONTROL_FAILED
        assert controller.flash_state is FlashState.OFF
        assert controller.flash_enabled is False
        assert (await controller.toggle_flash()).error is ErrorKind.TORCH_UNSUPPORTED
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_camera_off_turns_torch_off(self, controller, media):
        await ready(controller)
        await controller.toggle_camera()
        await controller.toggle_flash()
        await controller.toggle_camera()

        assert media.tracks[0].torch is False
        assert controller.flash_state is FlashState.UNSUPPORTED


class TestDisplayMode:
    """Tests for set_mode and toggle_mode."""

    def test_toggle_mode(self, controller):
        result = controller.toggle_mode()
        assert result.success
        assert controller.display_mode is DisplayMode.ANIMALS_ONLY
        assert controller.get_status()["mode"]["next_label"] == "All Objects"
        controller.toggle_mode()
        assert controller.display_mode is DisplayMode.ALL

    def test_set_same_mode(self, controller):
        result = controller.set_mode(DisplayMode.ALL)
        assert result.success
        assert controller.display_mode is DisplayMode.ALL

    def test_mode_allowed_while_camera_off(self, controller):
        assert controller.set_mode(DisplayMode.ANIMALS_ONLY).success
        assert controller.capture_state is CaptureState.OFF

    @pytest.mark.asyncio
    async def test_mode_applies_to_next_render(self, controller):
        await ready(controller)
        await controller.toggle_camera()
        controller.set_mode(DisplayMode.ANIMALS_ONLY)

        passes = []
        controller.loop.on_render(passes.append)
        for _ in range(200):
            if passes:
                break
            await asyncio.sleep(0.01)

        await controller.shutdown()
        assert passes
        # Pass keeps the raw detections; the filter is applied at render time
        assert [d.label for d in passes[0].detections] == ["car", "dog"]


class TestSnapshot:
    """Tests for snapshot."""

    @pytest.mark.asyncio
    async def test_snapshot_camera_off(self, controller, detector):
        await ready(controller)
        generation = controller.surface.generation

        result = await controller.snapshot()

        assert not result.success
        assert result.error is ErrorKind.CAMERA_NOT_ACTIVE
        assert result.message == "Please turn on the camera first."
        assert controller.surface.generation == generation
        assert detector.calls == 0

    @pytest.mark.asyncio
    async def test_snapshot_camera_on(self, controller):
        await ready(controller)
        await controller.toggle_camera()

        result = await controller.snapshot()

        assert result.success
        assert isinstance(result.data, Snapshot)
        assert result.data.data.startswith(b"\x89PNG")
        assert result.message == f"Snapshot saved as {result.data.filename}"
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_snapshot_detector_failure(self, session, mixed_detections):
        detector = ScriptedDetector(results=mixed_detections)
        controller = LifecycleController(session, detector, loop_interval=1.0)
        await ready(controller)
        await controller.toggle_camera()
        detector.fail_times = 5

        result = await controller.snapshot()

        assert not result.success
        assert result.error is ErrorKind.DETECTOR_FAILURE
        await controller.shutdown()


class TestFrameAndStatus:
    """Tests for live frame, status projection and shutdown."""

    @pytest.mark.asyncio
    async def test_frame_none_when_off(self, controller):
        assert await controller.render_frame_jpeg() is None

    @pytest.mark.asyncio
    async def test_frame_jpeg_when_on(self, controller):
        await ready(controller)
        await controller.toggle_camera()
        data = await controller.render_frame_jpeg()
        assert data.startswith(b"\xff\xd8")
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_state_change_callback(self, controller):
        seen = []
        controller.on_state_change(seen.append)
        await ready(controller)
        assert seen[-1]["status_message"] == "Model loaded. Camera is off."
        assert seen[-1]["model_state"] == "ready"

    def test_status_projection(self, controller):
        status = controller.get_status()
        assert status["capture_state"] == "off"
        assert status["flash"] == {"state": "unsupported", "enabled": False, "on": False}
        assert status["mode"]["value"] == "all"
        assert status["mode"]["label"] == "All Objects"
        assert status["camera_toggle_enabled"] is False

    @pytest.mark.asyncio
    async def test_shutdown(self, controller, detector, media):
        await ready(controller)
        await controller.toggle_camera()
        await controller.shutdown()

        assert controller.capture_state is CaptureState.OFF
        assert not controller.loop.is_running
        assert media.tracks[0].ready_state == "ended"
        assert detector.closed

    def test_command_result_to_dict(self):
        result = CommandResult(False, "Flash is not supported on this camera.",
                               error=ErrorKind.TORCH_UNSUPPORTED)
        assert result.to_dict() == {
            "success": False,
            "message": "Flash is not supported on this camera.",
            "error": "torch_unsupported",
        }
