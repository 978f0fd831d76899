import asyncio
import threading

import httpx
import numpy as np
import pytest

from skinscan.config import OrchestratorConfig, PipelineConfig, RetryConfig
from skinscan.detectors.face_mesh import LandmarkDetectorHandle
from skinscan.errors import (
    ERROR_MESSAGES,
    AnalysisCancelledError,
    AnalysisFailedError,
    ErrorType,
    OrchestratorBusyError,
    RemoteServiceError,
)
from skinscan.imaging.quality import ImageQualityGate
from skinscan.pipeline.orchestrator import AnalysisOrchestrator, ImageSubmission
from skinscan.pipeline.progress import ProgressChannel
from skinscan.types import AnalysisContext, AnalysisStage

SCORES_PAYLOAD = {
    "status": "success",
    "result_id": "r-1",
    "skin_condition_scores": {"pigmentation": 85, "pores": 62, "wrinkles": 77, "acne": 90},
}


class FakeUploader:
    def __init__(self, calls):
        self.calls = calls
        self.deleted = []

    async def put(self, data, on_progress, *, key):
        self.calls.append(f"put:{key}")
        on_progress(0.5)
        on_progress(1.0)
        return f"https://cdn.test/{key}"

    async def delete(self, url):
        self.deleted.append(url)


class GatedUploader(FakeUploader):
    def __init__(self, calls):
        super().__init__(calls)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def put(self, data, on_progress, *, key):
        self.started.set()
        await self.release.wait()
        return await super().put(data, on_progress, key=key)


class ThreadRecordingGate(ImageQualityGate):
    def __init__(self):
        super().__init__()
        self.threads = []

    def check(self, image):
        self.threads.append(threading.get_ident())
        return super().check(image)


class FakeAnalyzer:
    def __init__(self, calls, responses=None, gate=None):
        self.calls = calls
        self.responses = list(responses or [SCORES_PAYLOAD])
        self.gate = gate
        self.started = asyncio.Event()
        self.seen_urls = []

    async def analyze(self, url, context):
        self.calls.append("analyze")
        self.seen_urls.append(list(context.image_urls))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, BaseException):
            raise response
        return response


class SlowAnalyzer(FakeAnalyzer):
    async def analyze(self, url, context):
        self.calls.append("analyze")
        await asyncio.sleep(5)
        return SCORES_PAYLOAD


class FakeStore:
    def __init__(self, calls, error=None):
        self.calls = calls
        self.error = error
        self.saved = []

    async def save(self, result, url, context):
        self.calls.append("save")
        if self.error is not None:
            raise self.error
        self.saved.append((result, url))
        return "record-1"


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class EmptyDetector:
    def detect(self, image):
        return []


@pytest.fixture
def photo(png_bytes, noise_rgb):
    return png_bytes(noise_rgb(640, 640))


@pytest.fixture
def context():
    return AnalysisContext(user_id="user-1", access_token="token")


def build(calls, analyzer=None, store=None, config=None, detector=None, sleep=None):
    uploader = FakeUploader(calls)
    orchestrator = AnalysisOrchestrator(
        uploader,
        analyzer or FakeAnalyzer(calls),
        store or FakeStore(calls),
        config=config or PipelineConfig(),
        detector=detector,
        sleep=sleep or RecordingSleep(),
        clock=lambda: 0.0,
    )
    return orchestrator, uploader


def stage_sequence(channel):
    stages = []
    for event in channel.history:
        if not stages or stages[-1] is not event.stage:
            stages.append(event.stage)
    return stages


def assert_monotonic_within_stage(channel):
    previous = None
    for event in channel.history:
        if previous is not None and previous.stage is event.stage:
            assert event.progress >= previous.progress
        previous = event


@pytest.mark.asyncio
async def test_successful_run_orders_stages(photo, context):
    calls = []
    orchestrator, _ = build(calls)
    channel = ProgressChannel(clock=lambda: 0.0)

    outcome = await orchestrator.run([photo], context, channel)

    assert calls == ["put:user-1/original/front.jpg", "analyze", "save"]
    assert stage_sequence(channel) == [
        AnalysisStage.UPLOADING,
        AnalysisStage.ANALYZING,
        AnalysisStage.SAVING,
        AnalysisStage.COMPLETE,
    ]
    assert channel.latest.progress == 100
    assert channel.closed
    assert_monotonic_within_stage(channel)
    assert outcome.record_id == "record-1"
    assert outcome.source == "remote"
    assert outcome.result.details["pores"].score == 62
    assert outcome.result.primary_concern == "모공"
    assert outcome.quality is not None
    assert orchestrator.state is AnalysisStage.COMPLETE
    assert not orchestrator.is_running


@pytest.mark.asyncio
async def test_analyze_waits_for_pending_upload(photo, context):
    calls = []
    uploader = GatedUploader(calls)
    analyzer = FakeAnalyzer(calls)
    orchestrator = AnalysisOrchestrator(uploader, analyzer, FakeStore(calls), sleep=RecordingSleep())

    task = asyncio.create_task(orchestrator.run([photo], context))
    await uploader.started.wait()
    for _ in range(5):
        await asyncio.sleep(0)

    assert calls == []
    assert not analyzer.started.is_set()
    assert orchestrator.state is AnalysisStage.UPLOADING

    uploader.release.set()
    await task
    assert calls == ["put:user-1/original/front.jpg", "analyze", "save"]


@pytest.mark.asyncio
async def test_quality_gate_runs_off_the_event_loop(photo, context):
    calls = []
    gate = ThreadRecordingGate()
    orchestrator = AnalysisOrchestrator(
        FakeUploader(calls),
        FakeAnalyzer(calls),
        FakeStore(calls),
        quality_gate=gate,
        sleep=RecordingSleep(),
    )

    await orchestrator.run([photo], context)

    assert len(gate.threads) == 1
    assert gate.threads[0] != threading.get_ident()


@pytest.mark.asyncio
async def test_analyzing_milestones(photo, context):
    orchestrator, _ = build([])
    channel = ProgressChannel()

    await orchestrator.run([photo], context, channel)

    analyzing = [(e.progress, e.message) for e in channel.history if e.stage is AnalysisStage.ANALYZING]
    assert analyzing == [(60, "피부 질감 분석 중..."), (80, "색소 분석 중..."), (90, "트러블 예측 중...")]


@pytest.mark.asyncio
async def test_multiple_views_upload_in_order(photo, context):
    calls = []
    analyzer = FakeAnalyzer(calls)
    orchestrator, _ = build(calls, analyzer=analyzer)
    images = [photo, ImageSubmission(photo, filename="side.png"), ImageSubmission(photo, angle="right")]

    outcome = await orchestrator.run(images, context)

    assert calls[:3] == [
        "put:user-1/original/front.jpg",
        "put:user-1/original/left.png",
        "put:user-1/original/right.jpg",
    ]
    assert context.image_angles == ["front", "left", "right"]
    assert analyzer.seen_urls[0] == list(outcome.image_urls)
    assert outcome.image_urls[0].endswith("front.jpg")


@pytest.mark.asyncio
async def test_network_failure_is_retried(photo, context):
    calls = []
    analyzer = FakeAnalyzer(calls, responses=[httpx.ConnectError("refused"), SCORES_PAYLOAD])
    sleep = RecordingSleep()
    orchestrator, _ = build(calls, analyzer=analyzer, sleep=sleep)
    channel = ProgressChannel()

    outcome = await orchestrator.run([photo], context, channel)

    assert outcome.record_id == "record-1"
    assert calls.count("analyze") == 2
    assert sleep.delays == [1.0]
    assert stage_sequence(channel) == [
        AnalysisStage.UPLOADING,
        AnalysisStage.ANALYZING,
        AnalysisStage.RETRYING,
        AnalysisStage.ANALYZING,
        AnalysisStage.SAVING,
        AnalysisStage.COMPLETE,
    ]


@pytest.mark.asyncio
async def test_validation_failure_is_not_retried(photo, context):
    calls = []
    store = FakeStore(calls, error=RemoteServiceError("Invalid payload", status=422))
    sleep = RecordingSleep()
    orchestrator, uploader = build(calls, store=store, sleep=sleep)
    channel = ProgressChannel()

    with pytest.raises(AnalysisFailedError) as excinfo:
        await orchestrator.run([photo], context, channel)

    assert excinfo.value.classified.type is ErrorType.VALIDATION
    assert not excinfo.value.classified.retryable
    assert excinfo.value.stage == "saving"
    assert calls.count("save") == 1
    assert sleep.delays == []
    assert channel.latest.stage is AnalysisStage.FAILED
    assert channel.closed
    assert uploader.deleted == ["https://cdn.test/user-1/original/front.jpg"]


@pytest.mark.asyncio
async def test_auth_failure_is_not_retried(photo, context):
    calls = []
    analyzer = FakeAnalyzer(calls, responses=[RemoteServiceError("Unauthorized", status=401)])
    orchestrator, _ = build(calls, analyzer=analyzer)

    with pytest.raises(AnalysisFailedError) as excinfo:
        await orchestrator.run([photo], context)

    assert excinfo.value.classified.type is ErrorType.AUTH
    assert calls.count("analyze") == 1
    assert "save" not in calls


@pytest.mark.asyncio
async def test_server_errors_exhaust_retries(photo, context):
    calls = []
    analyzer = FakeAnalyzer(calls, responses=[RemoteServiceError("Bad gateway", status=502)])
    sleep = RecordingSleep()
    config = PipelineConfig(retry=RetryConfig(max_retries=2, initial_delay=0.5))
    orchestrator, _ = build(calls, analyzer=analyzer, sleep=sleep, config=config)

    with pytest.raises(AnalysisFailedError) as excinfo:
        await orchestrator.run([photo], context)

    assert excinfo.value.classified.type is ErrorType.SERVER
    assert calls.count("analyze") == 3
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_timeout_classifies_as_network(photo, context):
    calls = []
    config = PipelineConfig(
        retry=RetryConfig(max_retries=0),
        orchestrator=OrchestratorConfig(request_timeout=0.05),
    )
    orchestrator, _ = build(calls, analyzer=SlowAnalyzer(calls), config=config)

    with pytest.raises(AnalysisFailedError) as excinfo:
        await orchestrator.run([photo], context)

    assert excinfo.value.classified.type is ErrorType.NETWORK
    assert excinfo.value.classified.retryable
    assert excinfo.value.stage == "analyzing"


@pytest.mark.asyncio
async def test_cancel_prevents_saving(photo, context):
    calls = []
    gate = asyncio.Event()
    analyzer = FakeAnalyzer(calls, gate=gate)
    store = FakeStore(calls)
    orchestrator, uploader = build(calls, analyzer=analyzer, store=store)
    channel = ProgressChannel()

    task = asyncio.create_task(orchestrator.run([photo], context, channel))
    await analyzer.started.wait()
    assert orchestrator.cancel()

    with pytest.raises(AnalysisCancelledError):
        await task

    assert store.saved == []
    assert "save" not in calls
    assert uploader.deleted == ["https://cdn.test/user-1/original/front.jpg"]
    assert channel.latest.stage is AnalysisStage.FAILED
    assert channel.latest.message == ERROR_MESSAGES["ko"]["cancelled"]
    assert not orchestrator.is_running


@pytest.mark.asyncio
async def test_concurrent_run_is_rejected(photo, context):
    calls = []
    gate = asyncio.Event()
    analyzer = FakeAnalyzer(calls, gate=gate)
    orchestrator, _ = build(calls, analyzer=analyzer)

    task = asyncio.create_task(orchestrator.run([photo], context))
    await analyzer.started.wait()
    with pytest.raises(OrchestratorBusyError):
        await orchestrator.run([photo], context)
    gate.set()

    outcome = await task
    assert outcome.record_id == "record-1"


@pytest.mark.asyncio
async def test_undecodable_image_fails_before_upload(context):
    calls = []
    orchestrator, _ = build(calls)
    channel = ProgressChannel()

    with pytest.raises(AnalysisFailedError) as excinfo:
        await orchestrator.run([b"definitely not an image"], context, channel)

    assert excinfo.value.classified.type is ErrorType.VALIDATION
    assert calls == []
    assert [event.stage for event in channel.history] == [AnalysisStage.FAILED]


@pytest.mark.asyncio
async def test_low_quality_is_rejected_when_configured(png_bytes, context):
    calls = []
    dark = np.full((120, 120, 3), 5, dtype=np.uint8)
    config = PipelineConfig(orchestrator=OrchestratorConfig(reject_low_quality=True))
    orchestrator, _ = build(calls, config=config)

    with pytest.raises(AnalysisFailedError) as excinfo:
        await orchestrator.run([png_bytes(dark)], context)

    assert excinfo.value.classified.type is ErrorType.VALIDATION
    assert calls == []


@pytest.mark.asyncio
async def test_error_payload_is_a_model_failure(photo, context):
    calls = []
    analyzer = FakeAnalyzer(calls, responses=[{"status": "error", "error": "Gemini timed out upstream"}])
    sleep = RecordingSleep()
    orchestrator, _ = build(calls, analyzer=analyzer, sleep=sleep)

    with pytest.raises(AnalysisFailedError) as excinfo:
        await orchestrator.run([photo], context)

    assert excinfo.value.classified.type is ErrorType.MODEL
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_missing_scores_fall_back_to_local_metrics(photo, context):
    calls = []
    analyzer = FakeAnalyzer(calls, responses=[{"status": "success", "result_id": "r-2"}])
    detector = LandmarkDetectorHandle(EmptyDetector)
    orchestrator, _ = build(calls, analyzer=analyzer, detector=detector)

    outcome = await orchestrator.run([photo], context)

    assert outcome.source == "local"
    assert outcome.result.total_score == 50
    assert outcome.result.primary_concern == "기미"
    assert detector.loaded


@pytest.mark.asyncio
async def test_missing_scores_without_detector_is_model_failure(photo, context):
    calls = []
    analyzer = FakeAnalyzer(calls, responses=[{"status": "success"}])
    orchestrator, _ = build(calls, analyzer=analyzer)

    with pytest.raises(AnalysisFailedError) as excinfo:
        await orchestrator.run([photo], context)

    assert excinfo.value.classified.type is ErrorType.MODEL
    assert "save" not in calls
