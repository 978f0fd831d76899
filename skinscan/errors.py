"""Exception hierarchy and failure classification for the analysis pipeline."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx

LOGGER = logging.getLogger("skinscan.errors")


class SkinScanError(Exception):
    """Base class for errors raised by skinscan."""


class ValidationError(SkinScanError):
    """Input rejected before any remote call (size, format, quality)."""


class ImageDecodeError(ValidationError):
    """The submitted bytes cannot be read as an image at all."""


class QualityRejectedError(ValidationError):
    def __init__(self, message: str, verdict: Any = None) -> None:
        super().__init__(message)
        self.verdict = verdict


class RemoteServiceError(SkinScanError):
    """Non-2xx response (or error payload) from a remote collaborator."""

    def __init__(self, message: str, status: Optional[int] = None, payload: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.payload = payload


class ModelOutputError(SkinScanError):
    """The remote model answered but its output is unusable."""


class AnalysisCancelledError(SkinScanError):
    """The caller abandoned an in-flight orchestration run."""


class OrchestratorBusyError(SkinScanError):
    """A run was started while another one is still in flight."""


class ErrorType(str, Enum):
    NETWORK = "network"
    SERVER = "server"
    MODEL = "model"
    VALIDATION = "validation"
    AUTH = "auth"
    UNKNOWN = "unknown"


RETRYABLE_TYPES = frozenset({ErrorType.NETWORK, ErrorType.SERVER, ErrorType.MODEL})

ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "ko": {
        "network": "네트워크 연결에 문제가 있습니다. 인터넷 연결을 확인하고 다시 시도해주세요.",
        "network.timeout": "요청 시간이 초과되었습니다. 다시 시도해주세요.",
        "server": "서버에 일시적인 문제가 발생했습니다. 잠시 후 다시 시도해주세요.",
        "server.unavailable": "서비스를 일시적으로 사용할 수 없습니다. 잠시 후 다시 시도해주세요.",
        "model": "AI 분석 중 오류가 발생했습니다. 다른 사진으로 다시 시도해주세요.",
        "validation": "입력값을 확인해주세요.",
        "validation.too_large": "파일 크기가 너무 큽니다. 10MB 이하의 이미지를 선택해주세요.",
        "validation.image": "이미지 파일만 업로드 가능합니다.",
        "validation.decode": "이미지를 읽을 수 없습니다. 다른 사진을 선택해주세요.",
        "validation.quality": "사진 품질이 분석에 적합하지 않습니다. 다시 촬영해주세요.",
        "auth": "인증이 필요합니다. 다시 로그인해주세요.",
        "auth.expired": "세션이 만료되었습니다. 다시 로그인해주세요.",
        "cancelled": "분석이 취소되었습니다.",
        "unknown": "알 수 없는 오류가 발생했습니다.",
    },
    "en": {
        "network": "There is a problem with the network connection. Check your connection and try again.",
        "network.timeout": "The request timed out. Please try again.",
        "server": "The server had a temporary problem. Please try again shortly.",
        "server.unavailable": "The service is temporarily unavailable. Please try again shortly.",
        "model": "The AI analysis failed. Please try again with a different photo.",
        "validation": "Please check your input.",
        "validation.too_large": "The file is too large. Choose an image of 10MB or less.",
        "validation.image": "Only image files can be uploaded.",
        "validation.decode": "The image could not be read. Please choose a different photo.",
        "validation.quality": "The photo quality is not good enough for analysis. Please retake it.",
        "auth": "Authentication is required. Please log in again.",
        "auth.expired": "Your session has expired. Please log in again.",
        "cancelled": "The analysis was cancelled.",
        "unknown": "An unknown error occurred.",
    },
}

ERROR_HINTS: Dict[str, Dict[ErrorType, str]] = {
    "ko": {
        ErrorType.NETWORK: "인터넷 연결을 확인해주세요.",
        ErrorType.SERVER: "일시적인 서버 문제입니다. 잠시 후 다시 시도해주세요.",
        ErrorType.MODEL: "밝은 곳에서 정면 사진으로 다시 시도해주세요.",
        ErrorType.VALIDATION: "이미지 크기를 줄이거나 다른 사진을 선택해주세요.",
        ErrorType.AUTH: "다시 로그인해주세요.",
        ErrorType.UNKNOWN: "문제가 계속되면 고객센터에 문의해주세요.",
    },
    "en": {
        ErrorType.NETWORK: "Check your connection.",
        ErrorType.SERVER: "Temporary server issue. Try again in a moment.",
        ErrorType.MODEL: "Retake a well-lit, front-facing photo and try again.",
        ErrorType.VALIDATION: "Reduce the image size or pick a different photo.",
        ErrorType.AUTH: "Log in again.",
        ErrorType.UNKNOWN: "If the problem persists, contact support.",
    },
}

# (type, substrings, regex patterns); first match wins.
_MESSAGE_RULES: Tuple[Tuple[ErrorType, Tuple[str, ...], Tuple[str, ...]], ...] = (
    (
        ErrorType.NETWORK,
        ("fetch", "timeout", "timed out", "network", "connection", "네트워크", "시간 초과"),
        (),
    ),
    (
        ErrorType.SERVER,
        ("500", "502", "503", "504", "server", "service unavailable", "서버"),
        (),
    ),
    (
        ErrorType.MODEL,
        ("gemini", "분석", "pipeline", "파이프라인", "model"),
        (r"\bai\b",),
    ),
    (
        ErrorType.VALIDATION,
        ("too large", "invalid format", "invalid image", "validation", "not supported", "unsupported", "크기"),
        (),
    ),
    (
        ErrorType.AUTH,
        ("unauthorized", "token expired", "auth", "forbidden", "인증"),
        (),
    ),
)


@dataclass(frozen=True)
class ClassifiedError:
    type: ErrorType
    message: str
    retryable: bool
    original_error: Any
    hint: str = ""

    def to_dict(self) -> Dict:
        return {
            "type": self.type.value,
            "message": self.message,
            "retryable": self.retryable,
            "hint": self.hint,
        }


class AnalysisFailedError(SkinScanError):
    """Terminal orchestration failure carrying its classification."""

    def __init__(self, classified: ClassifiedError, stage: str) -> None:
        super().__init__(classified.message)
        self.classified = classified
        self.stage = stage


def _status_type(status: Optional[int]) -> Optional[ErrorType]:
    if status is None:
        return None
    if status in (401, 403):
        return ErrorType.AUTH
    if status in (400, 413, 415, 422):
        return ErrorType.VALIDATION
    if status in (408, 429) or status >= 500:
        return ErrorType.SERVER
    return None


def _error_text(error: Any) -> str:
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    if isinstance(error, Mapping):
        for key in ("error", "message", "detail"):
            value = error.get(key)
            if value:
                return str(value)
        return ""
    if error is None:
        return ""
    return str(error)


def _structured_type(error: Any) -> Optional[ErrorType]:
    if isinstance(error, AnalysisCancelledError):
        return ErrorType.UNKNOWN
    if isinstance(error, ValidationError):
        return ErrorType.VALIDATION
    if isinstance(error, ModelOutputError):
        return ErrorType.MODEL
    if isinstance(error, RemoteServiceError):
        status_type = _status_type(error.status)
        if status_type is not None:
            return status_type
        return None
    if isinstance(error, httpx.HTTPStatusError):
        return _status_type(error.response.status_code)
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorType.NETWORK
    if isinstance(error, (ConnectionError, httpx.TransportError)):
        return ErrorType.NETWORK
    return None


def _message_type(text: str) -> ErrorType:
    lowered = text.lower()
    for error_type, needles, patterns in _MESSAGE_RULES:
        if any(needle in lowered for needle in needles):
            return error_type
        if any(re.search(pattern, lowered) for pattern in patterns):
            return error_type
    return ErrorType.UNKNOWN


def _message_key(error_type: ErrorType, error: Any, text: str) -> str:
    if isinstance(error, AnalysisCancelledError):
        return "cancelled"
    lowered = text.lower()
    if error_type is ErrorType.NETWORK and (
        "timeout" in lowered or "timed out" in lowered or isinstance(error, (TimeoutError, asyncio.TimeoutError))
    ):
        return "network.timeout"
    if error_type is ErrorType.SERVER and ("503" in lowered or "unavailable" in lowered):
        return "server.unavailable"
    if error_type is ErrorType.VALIDATION:
        if isinstance(error, ImageDecodeError):
            return "validation.decode"
        if isinstance(error, QualityRejectedError):
            return "validation.quality"
        if "too large" in lowered or "크기" in lowered:
            return "validation.too_large"
        if "image" in lowered or "format" in lowered:
            return "validation.image"
    if error_type is ErrorType.AUTH and ("expired" in lowered or "만료" in lowered):
        return "auth.expired"
    return error_type.value


def classify_error(error: Any, locale: str = "ko") -> ClassifiedError:
    """Map any caught failure (or thrown value) onto the error taxonomy."""
    if isinstance(error, AnalysisFailedError):
        return error.classified

    text = _error_text(error)
    error_type = _structured_type(error) or _message_type(text)
    messages = ERROR_MESSAGES.get(locale, ERROR_MESSAGES["ko"])
    hints = ERROR_HINTS.get(locale, ERROR_HINTS["ko"])
    message = messages[_message_key(error_type, error, text)]
    classified = ClassifiedError(
        type=error_type,
        message=message,
        retryable=error_type in RETRYABLE_TYPES,
        original_error=error,
        hint=hints[error_type],
    )
    LOGGER.debug("Classified %s (%r) as %s", type(error).__name__, text, error_type.value)
    return classified
