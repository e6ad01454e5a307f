"""
Gateway HTTP Endpoints.

Endpoints:
    GET /tts
        Synthesize text. Answers with raw audio whose Content-Type is the
        backend's output format.

    GET /voices?mode=&raw=
        Voice ids for one mode, or the provider's native listing.

    GET /modes
        Enabled mode ids in registry order.

    GET /translation_languages
        DeepL target languages as [[code, name], ...].

    GET /health
        Service status.

    GET /metrics
        Prometheus exposition.

Response Headers (/tts):
    - X-Request-Id: Unique request identifier (12-char UUID prefix)
    - X-Cache: hit, miss or bypass
    - X-Bytes: Audio size in bytes

Errors:
    Every failure is a JSON body {"code": int, "display": str}:
        400 - Validation failure (codes 0, 1, 2, 3, 5)
        403 - Authorization failure (code 4)
        502/503/504/500 - Backend failure (code 0)
"""
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse, Response

from tts_gateway.api.dependencies import get_gateway_service
from tts_gateway.api.schemas import ErrorResponse, HealthResponse
from tts_gateway.core.logging import error, get_logger, set_request_id
from tts_gateway.core.metrics import metrics
from tts_gateway.services.errors import ErrorCode, GatewayError
from tts_gateway.services.gateway_service import GatewayService, TTSParams

router = APIRouter()

_LOG = get_logger("tts-gateway.api")

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _error_response(e: GatewayError, request_id: Optional[str] = None) -> JSONResponse:
    headers = {"X-Request-Id": request_id} if request_id else None
    return JSONResponse(status_code=e.status_code, content=e.to_dict(), headers=headers)


def _internal_error(request_id: Optional[str] = None) -> JSONResponse:
    headers = {"X-Request-Id": request_id} if request_id else None
    return JSONResponse(
        status_code=500,
        content={"code": ErrorCode.UNKNOWN, "display": "Internal server error"},
        headers=headers,
    )


@router.get("/tts", response_class=Response, responses=_ERROR_RESPONSES)
def tts(
    text: str = Query(..., description="Text to synthesize"),
    lang: Optional[str] = Query(default=None, description="Voice id from /voices"),
    mode: Optional[str] = Query(default=None, description="Mode id from /modes"),
    speaking_rate: float = Query(default=1.0, description="Rate multiplier, 1.0 = normal"),
    max_length: Optional[int] = Query(default=None, description="Lower the text length limit"),
    preferred_format: Optional[str] = Query(default=None, description="MP3, OGG, OPUS, WAV or PCM"),
    translation_lang: Optional[str] = Query(default=None, description="DeepL target language"),
    authorization: Optional[str] = Header(default=None),
    service: GatewayService = Depends(get_gateway_service),
):
    """
    Synthesize text and return the audio.

    Example:
        curl "http://localhost:3000/tts?text=Hello&lang=en&mode=gTTS" --output hello.mp3
    """
    rid = str(uuid.uuid4())[:12]
    set_request_id(rid)

    params = TTSParams(
        text=text,
        lang=lang,
        mode=mode,
        speaking_rate=speaking_rate,
        max_length=max_length,
        preferred_format=preferred_format,
        translation_lang=translation_lang,
    )

    try:
        outcome = service.handle(params, authorization=authorization, request_id=rid)
    except GatewayError as e:
        return _error_response(e, rid)
    except Exception as e:
        error(_LOG, "tts_internal_error", exc_info=True, error=str(e))
        return _internal_error(rid)

    headers = {
        "X-Request-Id": rid,
        "X-Cache": outcome.cache_status,
        "X-Bytes": str(len(outcome.audio)),
    }
    return Response(content=outcome.audio, media_type=outcome.content_type, headers=headers)


@router.get("/voices", responses=_ERROR_RESPONSES)
def voices(
    mode: Optional[str] = Query(default=None, description="Mode id from /modes"),
    raw: bool = Query(default=False, description="Return the provider's native listing"),
    service: GatewayService = Depends(get_gateway_service),
):
    """Voice ids for a mode (or the native listing with raw=true)."""
    try:
        return service.list_voices(mode, raw=raw)
    except GatewayError as e:
        return _error_response(e)
    except Exception as e:
        error(_LOG, "voices_internal_error", exc_info=True, mode=mode, error=str(e))
        return _internal_error()


@router.get("/modes")
def modes(service: GatewayService = Depends(get_gateway_service)):
    """Enabled mode ids, in registry order."""
    return service.list_modes()


@router.get("/translation_languages", responses=_ERROR_RESPONSES)
def translation_languages(service: GatewayService = Depends(get_gateway_service)):
    """DeepL target languages; an empty list when translation is off."""
    try:
        return service.translation_languages()
    except GatewayError as e:
        return _error_response(e)


@router.get("/health", response_model=HealthResponse)
def health(service: GatewayService = Depends(get_gateway_service)):
    """Health check for load balancers and orchestration."""
    return service.health_info()


@router.get("/metrics")
def prometheus_metrics():
    """Prometheus metrics endpoint."""
    content, content_type = metrics.get_metrics_response()
    return Response(content=content, media_type=content_type)
