"""Tests for the RecordingSession state machine."""

import asyncio
import threading

import pytest

from lilibet.errors import DeviceUnavailable, ErrorCode, PermissionDenied, SessionBusy
from lilibet.recorder import MockRecorder
from lilibet.session import RecordingSession, RecordingSlot, SessionState
from lilibet.transcriber import TranscriptionClient, TranscriptionResult


def make_factory(**kwargs):
    created = []

    def factory():
        recorder = MockRecorder(**kwargs)
        created.append(recorder)
        return recorder

    return factory, created


async def wait_for_state(session, state, timeout=2.0):
    async def poll():
        while session.state is not state:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


class FakeSpeech:
    def __init__(self, speaking=True):
        self.is_speaking = speaking
        self.stop_calls = 0

    def stop(self):
        self.stop_calls += 1
        self.is_speaking = False


@pytest.mark.asyncio
async def test_delivers_trimmed_text(fake_transcriber):
    factory, created = make_factory()
    transcriber = fake_transcriber(TranscriptionResult(success=True, text="  What is 2+2?  "))
    session = RecordingSession(factory, transcriber)

    assert await session.start() is SessionState.RECORDING
    outcome = await session.stop()

    assert outcome.state is SessionState.DELIVERED
    assert outcome.delivered
    assert outcome.text == "What is 2+2?"
    assert outcome.message == "What is 2+2?"
    assert transcriber.payloads[0].content_type == "audio/wav"
    assert created[0].release_count == 1
    assert not created[0].device_open


@pytest.mark.asyncio
async def test_state_transitions_reported(fake_transcriber):
    factory, _ = make_factory()
    seen = []
    session = RecordingSession(
        factory, fake_transcriber(), on_state_change=lambda old, new: seen.append(new)
    )
    await session.start()
    await session.stop()
    assert seen == [
        SessionState.REQUESTING_PERMISSION,
        SessionState.RECORDING,
        SessionState.STOPPING,
        SessionState.TRANSCRIBING,
        SessionState.DELIVERED,
    ]


@pytest.mark.asyncio
async def test_whitespace_transcription_is_no_speech(mock_transport, make_json_response):
    transport = mock_transport(lambda r: make_json_response({"success": True, "text": "  "}))
    factory, _ = make_factory()
    async with TranscriptionClient("http://tutor.test", transport=transport) as transcriber:
        session = RecordingSession(factory, transcriber)
        await session.start()
        outcome = await session.stop()

    assert outcome.state is SessionState.FAILED
    assert outcome.error is ErrorCode.NO_SPEECH_DETECTED
    assert outcome.retryable
    assert outcome.message == "I didn't catch that. Please try speaking again."


@pytest.mark.asyncio
async def test_end_to_end_with_http_client(mock_transport, make_json_response):
    transport = mock_transport(lambda r: make_json_response({"success": True, "text": "What is 2+2?"}))
    factory, _ = make_factory()
    async with TranscriptionClient("http://tutor.test", transport=transport) as transcriber:
        session = RecordingSession(factory, transcriber)
        await session.start()
        outcome = await session.stop()
    assert outcome.text == "What is 2+2?"
    assert b'filename="recording.wav"' in transport.requests[0].content


@pytest.mark.asyncio
async def test_blank_successful_result_is_no_speech(fake_transcriber):
    factory, _ = make_factory()
    session = RecordingSession(factory, fake_transcriber(TranscriptionResult(success=True, text=" \n")))
    await session.start()
    outcome = await session.stop()
    assert outcome.error is ErrorCode.NO_SPEECH_DETECTED


@pytest.mark.asyncio
async def test_transcription_unavailable(fake_transcriber):
    factory, created = make_factory()
    result = TranscriptionResult.failed(ErrorCode.TRANSCRIPTION_UNAVAILABLE, "HTTP 502")
    session = RecordingSession(factory, fake_transcriber(result))
    await session.start()
    outcome = await session.stop()
    assert outcome.state is SessionState.FAILED
    assert outcome.error is ErrorCode.TRANSCRIPTION_UNAVAILABLE
    assert outcome.detail == "HTTP 502"
    assert created[0].release_count == 1


@pytest.mark.asyncio
async def test_permission_denied_fails_without_raising(fake_transcriber):
    factory, created = make_factory(error=PermissionDenied("denied by user"))
    slot = RecordingSlot()
    session = RecordingSession(factory, fake_transcriber(), slot=slot)

    state = await session.start()

    assert state is SessionState.FAILED
    assert session.error is ErrorCode.PERMISSION_DENIED
    assert session.outcome.message == "Please allow microphone access to use voice input."
    assert not session.outcome.retryable
    assert not slot.busy
    assert created[0].release_count == 0


@pytest.mark.asyncio
async def test_device_unavailable(fake_transcriber):
    factory, _ = make_factory(error=DeviceUnavailable("no mic"))
    session = RecordingSession(factory, fake_transcriber())
    await session.start()
    assert session.error is ErrorCode.DEVICE_UNAVAILABLE


@pytest.mark.asyncio
async def test_empty_recording(fake_transcriber):
    factory, _ = make_factory(duration=0)
    transcriber = fake_transcriber()
    session = RecordingSession(factory, transcriber)
    await session.start()
    outcome = await session.stop()
    assert outcome.error is ErrorCode.EMPTY_RECORDING
    assert transcriber.payloads == []


@pytest.mark.asyncio
async def test_abandon_while_recording_releases_device(fake_transcriber):
    factory, created = make_factory()
    slot = RecordingSlot()
    session = RecordingSession(factory, fake_transcriber(), slot=slot)
    await session.start()
    recorder = created[0]
    assert recorder.device_open

    session.abandon()

    assert session.state is SessionState.ABANDONED
    assert not recorder.device_open
    assert recorder.release_count == 1
    assert not slot.busy


@pytest.mark.asyncio
async def test_abandon_is_idempotent(fake_transcriber):
    factory, created = make_factory()
    session = RecordingSession(factory, fake_transcriber())
    await session.start()
    session.abandon()
    session.abandon()
    assert created[0].release_count == 1
    outcome = await session.stop()
    assert outcome.state is SessionState.ABANDONED


@pytest.mark.asyncio
async def test_new_recording_rejected_while_transcribing(fake_transcriber):
    gate = asyncio.Event()
    factory, created = make_factory()
    slot = RecordingSlot()
    transcriber = fake_transcriber(gate=gate)
    first = RecordingSession(factory, transcriber, slot=slot)
    await first.start()
    stop_task = asyncio.create_task(first.stop())
    await wait_for_state(first, SessionState.TRANSCRIBING)

    second = RecordingSession(factory, transcriber, slot=slot)
    with pytest.raises(SessionBusy):
        await second.start()
    assert len(created) == 1
    assert second.state is SessionState.IDLE

    gate.set()
    outcome = await stop_task
    assert outcome.delivered
    assert not slot.busy

    assert await second.start() is SessionState.RECORDING
    assert len(created) == 2
    second.abandon()


@pytest.mark.asyncio
async def test_abandon_while_transcribing_cancels_upload(fake_transcriber):
    gate = asyncio.Event()
    factory, created = make_factory()
    session = RecordingSession(factory, fake_transcriber(gate=gate))
    await session.start()
    stop_task = asyncio.create_task(session.stop())
    await wait_for_state(session, SessionState.TRANSCRIBING)

    session.abandon()
    outcome = await stop_task

    assert outcome.state is SessionState.ABANDONED
    assert outcome.text == ""
    assert created[0].release_count == 1


@pytest.mark.asyncio
async def test_cancelling_stop_abandons(fake_transcriber):
    gate = asyncio.Event()
    factory, _ = make_factory()
    slot = RecordingSlot()
    session = RecordingSession(factory, fake_transcriber(gate=gate), slot=slot)
    await session.start()
    stop_task = asyncio.create_task(session.stop())
    await wait_for_state(session, SessionState.TRANSCRIBING)

    stop_task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await stop_task
    assert session.state is SessionState.ABANDONED
    assert not slot.busy


@pytest.mark.asyncio
async def test_session_is_single_use(fake_transcriber):
    factory, _ = make_factory()
    session = RecordingSession(factory, fake_transcriber())
    await session.start()
    with pytest.raises(SessionBusy):
        await session.start()
    await session.stop()
    with pytest.raises(SessionBusy):
        await session.start()


@pytest.mark.asyncio
async def test_stop_before_start_raises(fake_transcriber):
    factory, _ = make_factory()
    session = RecordingSession(factory, fake_transcriber())
    with pytest.raises(SessionBusy):
        await session.stop()


@pytest.mark.asyncio
async def test_start_interrupts_speech(fake_transcriber):
    factory, _ = make_factory()
    speech = FakeSpeech(speaking=True)
    session = RecordingSession(factory, fake_transcriber(), speech=speech)
    await session.start()
    assert speech.stop_calls == 1
    session.abandon()


@pytest.mark.asyncio
async def test_stop_twice_returns_same_outcome(fake_transcriber):
    factory, created = make_factory()
    session = RecordingSession(factory, fake_transcriber())
    await session.start()
    first = await session.stop()
    second = await session.stop()
    assert first == second
    assert created[0].release_count == 1


class SlowStartRecorder(MockRecorder):
    """Recorder whose device takes until ``opened`` is set to come up."""

    def __init__(self):
        super().__init__()
        self.opening = threading.Event()
        self.opened = threading.Event()

    def _acquire(self):
        self.opening.set()
        self.opened.wait(5)
        super()._acquire()


@pytest.mark.asyncio
async def test_unexpected_start_error_fails_and_frees_slot(fake_transcriber):
    factory, _ = make_factory(error=OSError("cannot create recordings directory"))
    slot = RecordingSlot()
    session = RecordingSession(factory, fake_transcriber(), slot=slot)

    assert await session.start() is SessionState.FAILED
    assert session.error is ErrorCode.DEVICE_UNAVAILABLE
    assert not slot.busy

    retry = RecordingSession(make_factory()[0], fake_transcriber(), slot=slot)
    assert await retry.start() is SessionState.RECORDING
    retry.abandon()


@pytest.mark.asyncio
async def test_recorder_factory_error_fails_and_frees_slot(fake_transcriber):
    def factory():
        raise RuntimeError("no recorder backend")

    slot = RecordingSlot()
    session = RecordingSession(factory, fake_transcriber(), slot=slot)
    assert await session.start() is SessionState.FAILED
    assert session.error is ErrorCode.DEVICE_UNAVAILABLE
    assert not slot.busy


@pytest.mark.asyncio
async def test_unexpected_transcription_error_fails_and_frees_slot(fake_transcriber):
    factory, created = make_factory()
    slot = RecordingSlot()
    session = RecordingSession(factory, fake_transcriber(error=ValueError("bad url")), slot=slot)
    await session.start()

    outcome = await session.stop()

    assert outcome.state is SessionState.FAILED
    assert outcome.error is ErrorCode.TRANSCRIPTION_UNAVAILABLE
    assert not slot.busy
    assert not created[0].device_open


@pytest.mark.asyncio
async def test_abandon_while_opening_defers_release(fake_transcriber):
    recorder = SlowStartRecorder()
    slot = RecordingSlot()
    session = RecordingSession(lambda: recorder, fake_transcriber(), slot=slot)
    start_task = asyncio.create_task(session.start())
    await asyncio.to_thread(recorder.opening.wait, 2)

    session.abandon()

    assert session.state is SessionState.ABANDONED
    assert not slot.busy
    assert recorder.release_count == 0

    recorder.opened.set()
    assert await asyncio.wait_for(start_task, 2) is SessionState.ABANDONED
    assert not recorder.device_open
    assert recorder.release_count == 1
