"""Tests for the analysis orchestrator state machine."""

import asyncio
import shutil
import tempfile
import unittest
from io import BytesIO
from unittest.mock import AsyncMock

from PIL import Image

from analysis_orchestrator import FALLBACK_ERROR_MESSAGE, AnalysisOrchestrator, ValidationError
from detection_service import DetectionService, DetectionServiceError
from input_validation import NO_IMAGE_REASON, NO_TEXT_REASON
from mode_state import IDLE, LOADING, Error, ImageInput, Mode, ModeState, Result, SelectedImage
from preview_resources import PreviewManager


def make_image(name="photo.png"):
    buf = BytesIO()
    Image.new("RGB", (16, 16)).save(buf, format="PNG")
    return SelectedImage(filename=name, data=buf.getvalue(), mime_type="image/png")


class GatedService(DetectionService):
    """Stub whose calls block until release() is called."""

    def __init__(self, verdict=True, error=None):
        self.verdict = verdict
        self.error = error
        self.calls = []
        self.gate = asyncio.Event()

    def release(self):
        self.gate.set()

    async def _answer(self):
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.verdict

    async def detect_text(self, text):
        self.calls.append(("text", text))
        return await self._answer()

    async def detect_image(self, data, mime_type, filename="image"):
        self.calls.append(("image", data, mime_type, filename))
        return await self._answer()


class OrchestratorTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.state = ModeState(preview_manager=PreviewManager(self.tmpdir))
        self.service = AsyncMock(spec=DetectionService)
        self.orchestrator = AnalysisOrchestrator(self.state, self.service)

    def tearDown(self):
        self.orchestrator.dispose()
        shutil.rmtree(self.tmpdir, ignore_errors=True)


class TestValidationFailures(OrchestratorTestCase):

    async def test_whitespace_text_is_rejected_without_calling_service(self):
        self.state.update_text("   ")
        await self.orchestrator.analyze()
        self.assertEqual(self.state.status, Error(NO_TEXT_REASON))
        self.service.detect_text.assert_not_called()
        self.assertEqual(self.orchestrator.dispatch_count, 0)

    async def test_missing_image_is_rejected_without_calling_service(self):
        self.state.set_mode(Mode.IMAGE)
        await self.orchestrator.analyze()
        self.assertEqual(self.state.status, Error(NO_IMAGE_REASON))
        self.service.detect_image.assert_not_called()

    async def test_user_can_retry_after_validation_error(self):
        self.state.update_text("")
        await self.orchestrator.analyze()
        self.state.update_text("now with text")
        self.service.detect_text.return_value = False
        await self.orchestrator.analyze()
        self.assertEqual(self.state.status, Result(False))


class TestOutcomes(OrchestratorTestCase):

    async def test_text_result(self):
        self.service.detect_text.return_value = True
        self.state.update_text("Hello world")
        verdict = await self.orchestrator.analyze()
        self.assertTrue(verdict)
        self.assertEqual(self.state.status, Result(True))
        self.service.detect_text.assert_awaited_once_with("Hello world")
        self.assertFalse(self.orchestrator.in_flight)

    async def test_image_is_sent_as_raw_bytes(self):
        self.service.detect_image.return_value = False
        self.state.set_mode(Mode.IMAGE)
        image = make_image("cat.png")
        self.state.select_file(image)
        await self.orchestrator.analyze()
        self.service.detect_image.assert_awaited_once_with(image.data, "image/png", filename="cat.png")
        self.service.detect_text.assert_not_called()
        self.assertEqual(self.state.status, Result(False))

    async def test_image_service_error_message_is_surfaced(self):
        self.service.detect_image.side_effect = DetectionServiceError("quota exceeded")
        self.state.set_mode(Mode.IMAGE)
        self.state.select_file(make_image())
        await self.orchestrator.analyze()
        self.assertEqual(self.state.status, Error("quota exceeded"))
        self.assertFalse(self.orchestrator.in_flight)

    async def test_unexpected_exception_without_message_uses_fallback(self):
        self.service.detect_text.side_effect = RuntimeError()
        self.state.update_text("text")
        await self.orchestrator.analyze()
        self.assertEqual(self.state.status, Error(FALLBACK_ERROR_MESSAGE))

    async def test_non_string_message_attribute_uses_exception_text(self):
        class OddError(Exception):
            message = 42

        self.service.detect_text.side_effect = OddError("odd failure")
        self.state.update_text("text")
        await self.orchestrator.analyze()
        self.assertEqual(self.state.status, Error("odd failure"))
        self.assertFalse(self.orchestrator.in_flight)

    async def test_non_string_message_without_text_uses_fallback(self):
        class OddError(Exception):
            message = {"code": 500}

        self.service.detect_text.side_effect = OddError()
        self.state.update_text("text")
        await self.orchestrator.analyze()
        self.assertEqual(self.state.status, Error(FALLBACK_ERROR_MESSAGE))

    async def test_failing_listener_does_not_leave_session_loading(self):
        def broken_listener(state):
            if state.status == LOADING:
                raise BrokenPipeError("stdout closed")

        self.state.subscribe(broken_listener)
        self.service.detect_text.return_value = True
        self.state.update_text("Hello world")
        await self.orchestrator.analyze()
        self.assertEqual(self.state.status, Result(True))
        self.assertFalse(self.orchestrator.in_flight)

        await self.orchestrator.analyze()
        self.assertEqual(self.service.detect_text.await_count, 2)

    async def test_mismatched_input_never_reaches_service(self):
        with self.assertRaises(ValidationError):
            await self.orchestrator._dispatch(Mode.IMAGE, ImageInput())
        with self.assertRaises(ValidationError):
            await self.orchestrator._dispatch(Mode.TEXT, ImageInput())
        self.service.detect_image.assert_not_called()
        self.service.detect_text.assert_not_called()

    async def test_non_boolean_verdict_is_an_error(self):
        self.service.detect_text.return_value = "yes"
        self.state.update_text("text")
        await self.orchestrator.analyze()
        self.assertEqual(self.state.status, Error(FALLBACK_ERROR_MESSAGE))

    async def test_result_stays_until_explicit_reset(self):
        self.service.detect_text.return_value = True
        self.state.update_text("text")
        await self.orchestrator.analyze()
        await asyncio.sleep(0)
        self.assertEqual(self.state.status, Result(True))
        self.state.update_text("text!")
        self.assertEqual(self.state.status, IDLE)

    async def test_status_sequence_seen_by_listener(self):
        seen = []
        self.state.subscribe(lambda s: seen.append(s.status))
        self.service.detect_text.return_value = False
        self.state.update_text("text")
        await self.orchestrator.analyze()
        self.assertEqual(seen, [IDLE, LOADING, Result(False)])


class TestSingleFlight(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.state = ModeState(preview_manager=PreviewManager(self.tmpdir))

    def tearDown(self):
        self.state.dispose()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    async def test_second_analyze_while_loading_is_ignored(self):
        service = GatedService(verdict=True)
        orchestrator = AnalysisOrchestrator(self.state, service)
        self.state.update_text("Hello world")

        first = asyncio.create_task(orchestrator.analyze())
        await asyncio.sleep(0)
        self.assertEqual(self.state.status, LOADING)
        self.assertTrue(orchestrator.in_flight)

        second = await orchestrator.analyze()
        self.assertIsNone(second)

        service.release()
        await first
        self.assertEqual(len(service.calls), 1)
        self.assertEqual(self.state.status, Result(True))
        self.assertFalse(orchestrator.in_flight)

    async def test_concurrent_calls_dispatch_once(self):
        service = GatedService(verdict=False)
        orchestrator = AnalysisOrchestrator(self.state, service)
        self.state.update_text("Hello world")

        tasks = [asyncio.create_task(orchestrator.analyze()) for _ in range(3)]
        await asyncio.sleep(0)
        service.release()
        await asyncio.gather(*tasks)
        self.assertEqual(len(service.calls), 1)
        self.assertEqual(orchestrator.dispatch_count, 1)

    async def test_loading_ends_after_failure(self):
        service = GatedService(error=DetectionServiceError("service unavailable"))
        orchestrator = AnalysisOrchestrator(self.state, service)
        self.state.update_text("Hello world")
        task = asyncio.create_task(orchestrator.analyze())
        await asyncio.sleep(0)
        service.release()
        await task
        self.assertEqual(self.state.status, Error("service unavailable"))
        self.assertFalse(orchestrator.in_flight)


class TestStaleCompletions(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.state = ModeState(preview_manager=PreviewManager(self.tmpdir))

    def tearDown(self):
        self.state.dispose()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    async def _switch_mode_mid_flight(self, discard_stale):
        service = GatedService(verdict=True)
        orchestrator = AnalysisOrchestrator(self.state, service, discard_stale=discard_stale)
        self.state.update_text("Hello world")
        task = asyncio.create_task(orchestrator.analyze())
        await asyncio.sleep(0)

        self.state.set_mode(Mode.IMAGE)
        self.assertEqual(self.state.status, IDLE)
        # Still single-flight: the first request has not settled
        self.state.select_file(make_image())
        self.assertIsNone(await orchestrator.analyze())
        self.assertEqual(len(service.calls), 1)

        service.release()
        return await task

    async def test_stale_result_is_discarded_by_default(self):
        verdict = await self._switch_mode_mid_flight(discard_stale=True)
        self.assertIsNone(verdict)
        self.assertEqual(self.state.status, IDLE)

    async def test_stale_result_can_overwrite_when_enabled(self):
        verdict = await self._switch_mode_mid_flight(discard_stale=False)
        self.assertTrue(verdict)
        self.assertEqual(self.state.status, Result(True))


class TestDisposedSession(unittest.IsolatedAsyncioTestCase):

    async def test_analyze_after_dispose_does_nothing(self):
        tmpdir = tempfile.mkdtemp()
        try:
            state = ModeState(preview_manager=PreviewManager(tmpdir))
            service = AsyncMock(spec=DetectionService)
            orchestrator = AnalysisOrchestrator(state, service)
            state.update_text("Hello world")
            orchestrator.dispose()
            self.assertIsNone(await orchestrator.analyze())
            service.detect_text.assert_not_called()
        finally:
            shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == '__main__':
    unittest.main(verbosity=2)
