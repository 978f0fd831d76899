"""Staged upload -> analyze -> save workflow with progress, timeouts and retry."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    TypeVar,
    Union,
    runtime_checkable,
)

from skinscan.analysis.metrics import SkinMetricEngine
from skinscan.analysis.scores import result_from_payload
from skinscan.config import PipelineConfig
from skinscan.detectors.face_mesh import LandmarkDetectorHandle
from skinscan.errors import (
    AnalysisCancelledError,
    AnalysisFailedError,
    ClassifiedError,
    ErrorType,
    ModelOutputError,
    OrchestratorBusyError,
    QualityRejectedError,
    ValidationError,
    classify_error,
)
from skinscan.imaging.decode import decode_image
from skinscan.imaging.quality import ImageQualityGate
from skinscan.pipeline.progress import ProgressChannel
from skinscan.pipeline.retry import retry_with_backoff
from skinscan.types import (
    AnalysisContext,
    AnalysisStage,
    DecodedImage,
    QualityVerdict,
    SkinAnalysisResult,
)

LOGGER = logging.getLogger("skinscan.pipeline.orchestrator")

T = TypeVar("T")

UploadProgress = Callable[[float], None]

DEFAULT_ANGLES: Tuple[str, ...] = ("front", "left", "right")

MESSAGE_UPLOADING = "이미지 업로드 중..."
MESSAGE_TEXTURE = "피부 질감 분석 중..."
MESSAGE_PIGMENTATION = "색소 분석 중..."
MESSAGE_TROUBLE = "트러블 예측 중..."
MESSAGE_SAVING = "결과 저장 중..."
MESSAGE_COMPLETE = "분석 완료!"
MESSAGE_MODEL_ERROR = "AI 분석 중 오류가 발생했습니다."


@runtime_checkable
class UploadService(Protocol):
    async def put(self, data: bytes, on_progress: UploadProgress, *, key: str) -> str:
        """Store ``data`` under ``key`` and return its public URL.

        ``on_progress`` receives the uploaded fraction in [0, 1].
        """


@runtime_checkable
class AnalysisService(Protocol):
    async def analyze(self, url: str, context: AnalysisContext) -> Mapping[str, Any]:
        ...


@runtime_checkable
class PersistenceService(Protocol):
    async def save(self, result: SkinAnalysisResult, url: str, context: AnalysisContext) -> str:
        ...


@dataclass(frozen=True)
class ImageSubmission:
    data: bytes
    angle: Optional[str] = None
    filename: Optional[str] = None


@dataclass(frozen=True)
class AnalysisOutcome:
    """What a successful run returns."""

    record_id: str
    result: SkinAnalysisResult
    image_urls: Tuple[str, ...]
    quality: Optional[QualityVerdict]
    source: str
    raw: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "recordId": self.record_id,
            "result": self.result.to_dict(),
            "imageUrls": list(self.image_urls),
            "quality": self.quality.to_dict() if self.quality is not None else None,
            "source": self.source,
        }


@dataclass
class _RunState:
    submissions: List[ImageSubmission]
    context: AnalysisContext
    channel: ProgressChannel
    uploaded: List[str] = field(default_factory=list)
    image: Optional[DecodedImage] = None
    quality: Optional[QualityVerdict] = None


def _as_submission(item: Union[bytes, bytearray, ImageSubmission]) -> ImageSubmission:
    if isinstance(item, ImageSubmission):
        return item
    if isinstance(item, (bytes, bytearray)):
        return ImageSubmission(data=bytes(item))
    raise ValidationError(f"Unsupported image submission type {type(item).__name__}")


class AnalysisOrchestrator:
    """Runs one analysis at a time: decode, quality gate, upload, analyze, save.

    Every collaborator call is bounded by ``request_timeout`` and retried with
    exponential backoff when its failure classifies as one of
    ``config.retry.retry_types``. Any other failure, or retry exhaustion, ends
    the run with a ``failed`` event and ``AnalysisFailedError``.
    """

    def __init__(
        self,
        uploader: UploadService,
        analyzer: AnalysisService,
        store: PersistenceService,
        *,
        config: Optional[PipelineConfig] = None,
        quality_gate: Optional[ImageQualityGate] = None,
        detector: Optional[LandmarkDetectorHandle] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        locale: str = "ko",
    ) -> None:
        self.uploader = uploader
        self.analyzer = analyzer
        self.store = store
        self.config = config or PipelineConfig()
        self.quality_gate = quality_gate or ImageQualityGate(self.config.quality)
        self.detector = detector
        self.locale = locale
        self._sleep = sleep
        self._clock = clock
        self._metric_engine = SkinMetricEngine(self.config.orchestrator.sample_size)
        self._retry_types = frozenset(ErrorType(value) for value in self.config.retry.retry_types)
        self._stage = AnalysisStage.IDLE
        self._running = False
        self._cancel_requested = False
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> AnalysisStage:
        return self._stage

    @property
    def is_running(self) -> bool:
        return self._running

    def cancel(self) -> bool:
        """Abandon the in-flight run at its next suspension point."""
        if not self._running or self._stage.is_terminal or self._task is None:
            return False
        LOGGER.info("Cancellation requested during %s", self._stage.value)
        self._cancel_requested = True
        return self._task.cancel()

    async def run(
        self,
        images: Sequence[Union[bytes, bytearray, ImageSubmission]],
        context: AnalysisContext,
        progress: Optional[ProgressChannel] = None,
    ) -> AnalysisOutcome:
        """Run the full sequence; index 0 of ``images`` is the front view.

        ``context.image_urls`` and ``context.image_angles`` are filled in once
        uploads finish so the analysis collaborator can see every view.
        """
        if self._running:
            raise OrchestratorBusyError("An analysis run is already in progress")
        self._running = True
        self._cancel_requested = False
        self._stage = AnalysisStage.IDLE
        channel = progress or ProgressChannel(clock=self._clock)
        state = _RunState(submissions=[], context=context, channel=channel)
        try:
            self._task = asyncio.ensure_future(self._execute(images, state))
            try:
                return await self._task
            except asyncio.CancelledError:
                if not self._cancel_requested:
                    await self._abort(state, AnalysisCancelledError("Analysis task was cancelled"))
                    raise
                error = AnalysisCancelledError(f"Analysis cancelled during {self._stage.value}")
                await self._abort(state, error)
                raise error from None
            except Exception as exc:
                stage = self._stage
                classified = await self._abort(state, exc)
                raise AnalysisFailedError(classified, stage.value) from exc
        finally:
            self._task = None
            self._running = False

    async def _execute(
        self,
        images: Sequence[Union[bytes, bytearray, ImageSubmission]],
        state: _RunState,
    ) -> AnalysisOutcome:
        if not images:
            raise ValidationError("At least one image is required")
        state.submissions = [_as_submission(item) for item in images]

        await self._prepare(state)
        await self._upload(state)
        payload, result, source = await self._analyze(state)
        record_id = await self._save(state, result)

        self._enter(state.channel, AnalysisStage.COMPLETE, 100, MESSAGE_COMPLETE)
        state.channel.close()
        LOGGER.info(
            "Analysis complete record=%s total=%d source=%s",
            record_id,
            result.total_score,
            source,
        )
        return AnalysisOutcome(
            record_id=record_id,
            result=result,
            image_urls=tuple(state.uploaded),
            quality=state.quality,
            source=source,
            raw=payload,
        )

    async def _prepare(self, state: _RunState) -> None:
        primary = state.submissions[0]
        state.image = await asyncio.to_thread(decode_image, primary.data)
        verdict = await asyncio.to_thread(self.quality_gate.check, state.image)
        state.quality = verdict
        if not verdict.is_good:
            if self.config.orchestrator.reject_low_quality:
                detail = ", ".join(verdict.reasons) or f"overall score {verdict.overall_score}"
                raise QualityRejectedError(f"Image quality too low: {detail}", verdict)
            LOGGER.warning(
                "Continuing with low quality image (overall=%d reasons=%s)",
                verdict.overall_score,
                list(verdict.reasons),
            )

    async def _upload(self, state: _RunState) -> None:
        channel = state.channel
        total = len(state.submissions)
        self._enter(channel, AnalysisStage.UPLOADING, 0, MESSAGE_UPLOADING)
        angles: List[str] = []
        for index, submission in enumerate(state.submissions):
            angle = self._angle_for(state.context, submission, index)
            key = self._object_key(state.context, submission, angle)

            def on_progress(fraction: float, index: int = index) -> None:
                fraction = max(0.0, min(1.0, float(fraction)))
                if self._stage is AnalysisStage.UPLOADING:
                    channel.publish(AnalysisStage.UPLOADING, (index + fraction) / total * 100, MESSAGE_UPLOADING)

            url = await self._call(
                state,
                AnalysisStage.UPLOADING,
                lambda: self.uploader.put(submission.data, on_progress, key=key),
                resume_progress=index / total * 100,
                resume_message=MESSAGE_UPLOADING,
            )
            state.uploaded.append(url)
            angles.append(angle)
            channel.publish(AnalysisStage.UPLOADING, (index + 1) / total * 100, MESSAGE_UPLOADING)
            LOGGER.info("Uploaded %s image %d/%d -> %s", angle, index + 1, total, url)
        state.context.image_urls = list(state.uploaded)
        state.context.image_angles = angles

    async def _analyze(self, state: _RunState) -> Tuple[Mapping[str, Any], SkinAnalysisResult, str]:
        channel = state.channel
        primary_url = state.uploaded[0]
        self._enter(channel, AnalysisStage.ANALYZING, 60, MESSAGE_TEXTURE)
        payload = await self._call(
            state,
            AnalysisStage.ANALYZING,
            lambda: self.analyzer.analyze(primary_url, state.context),
            resume_progress=60,
            resume_message=MESSAGE_TEXTURE,
        )
        channel.publish(AnalysisStage.ANALYZING, 80, MESSAGE_PIGMENTATION)
        if not isinstance(payload, Mapping):
            raise ModelOutputError(f"Analysis returned {type(payload).__name__}, expected an object")
        if payload.get("status") == "error":
            raise ModelOutputError(str(payload.get("error") or MESSAGE_MODEL_ERROR))

        result = result_from_payload(payload)
        source = "remote"
        if result is None:
            result = await self._local_metrics(state)
            source = "local"
        channel.publish(AnalysisStage.ANALYZING, 90, MESSAGE_TROUBLE)
        return payload, result, source

    async def _local_metrics(self, state: _RunState) -> SkinAnalysisResult:
        if self.detector is None or not self.config.orchestrator.local_fallback:
            raise ModelOutputError("Analysis model returned no usable skin scores")
        LOGGER.warning("Remote payload has no scores; computing metrics locally")
        image = state.image
        timeout = self.config.orchestrator.landmark_timeout
        landmarks = await self._call(
            state,
            AnalysisStage.ANALYZING,
            lambda: self.detector.detect(image, timeout=None),
            resume_progress=80,
            resume_message=MESSAGE_PIGMENTATION,
            timeout=timeout,
        )
        return await asyncio.to_thread(self._metric_engine.compute, image, landmarks)

    async def _save(self, state: _RunState, result: SkinAnalysisResult) -> str:
        self._enter(state.channel, AnalysisStage.SAVING, 0, MESSAGE_SAVING)
        record_id = await self._call(
            state,
            AnalysisStage.SAVING,
            lambda: self.store.save(result, state.uploaded[0], state.context),
            resume_progress=0,
            resume_message=MESSAGE_SAVING,
        )
        state.channel.publish(AnalysisStage.SAVING, 100, MESSAGE_SAVING)
        return str(record_id)

    async def _call(
        self,
        state: _RunState,
        stage: AnalysisStage,
        factory: Callable[[], Awaitable[T]],
        *,
        resume_progress: float,
        resume_message: str,
        timeout: Optional[float] = None,
    ) -> T:
        limit = self.config.orchestrator.request_timeout if timeout is None else timeout
        retry = self.config.retry

        async def attempt() -> T:
            if self._stage is AnalysisStage.RETRYING:
                self._enter(state.channel, stage, resume_progress, resume_message)
            return await asyncio.wait_for(factory(), limit)

        def on_retry(attempt_no: int, max_retries: int, delay: float, classified: ClassifiedError) -> None:
            self._enter(
                state.channel,
                AnalysisStage.RETRYING,
                attempt_no / max(1, max_retries) * 100,
                f"재시도 중... ({attempt_no}/{max_retries})",
            )

        return await retry_with_backoff(
            attempt,
            max_retries=retry.max_retries,
            initial_delay=retry.initial_delay,
            retry_types=self._retry_types,
            sleep=self._sleep,
            on_retry=on_retry,
            classify=lambda exc: classify_error(exc, self.locale),
        )

    def _enter(self, channel: ProgressChannel, stage: AnalysisStage, progress: float, message: str) -> None:
        LOGGER.info("Stage %s -> %s (%s)", self._stage.value, stage.value, message)
        self._stage = stage
        channel.publish(stage, progress, message)

    async def _abort(self, state: _RunState, error: BaseException) -> ClassifiedError:
        classified = classify_error(error, self.locale)
        LOGGER.error(
            "Analysis failed during %s: %s error (%s)",
            self._stage.value,
            classified.type.value,
            error,
        )
        await self._discard_uploads(state.uploaded)
        if not state.channel.closed:
            self._stage = AnalysisStage.FAILED
            state.channel.publish(AnalysisStage.FAILED, 0, classified.message)
            state.channel.close()
        return classified

    async def _discard_uploads(self, urls: Sequence[str]) -> None:
        delete = getattr(self.uploader, "delete", None)
        if delete is None or not urls:
            return
        for url in urls:
            try:
                await asyncio.wait_for(delete(url), self.config.orchestrator.request_timeout)
            except Exception as exc:
                LOGGER.warning("Failed to remove uploaded object %s: %s", url, exc)
            else:
                LOGGER.info("Removed uploaded object %s", url)

    @staticmethod
    def _angle_for(context: AnalysisContext, submission: ImageSubmission, index: int) -> str:
        if submission.angle:
            return submission.angle
        if index < len(context.image_angles) and context.image_angles[index]:
            return context.image_angles[index]
        if index < len(DEFAULT_ANGLES):
            return DEFAULT_ANGLES[index]
        return f"angle{index}"

    @staticmethod
    def _object_key(context: AnalysisContext, submission: ImageSubmission, angle: str) -> str:
        suffix = PurePath(submission.filename).suffix.lstrip(".").lower() if submission.filename else ""
        return f"{context.user_id}/original/{angle}.{suffix or 'jpg'}"
