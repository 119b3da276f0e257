"""FastAPI entry-point for the identity capture controller."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import psutil
from fastapi import FastAPI, File, HTTPException, Request, UploadFile, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from .backend.http_client import BackendHttpClient
from .config import Settings, get_settings
from .errors import (
    CaptureDeviceDenied,
    CaptureFlowError,
    FinalizeFailure,
    StatusUnavailable,
    UploadFailure,
    ValidationFailure,
)
from .logging_config import configure_logging
from .sensors.camera import CameraService
from .sensors.face_presence import FaceDetector, create_face_detector
from .session_manager import CaptureController, ControllerRegistry
from .state import DocumentType

logger = logging.getLogger(__name__)

_ERROR_STATUS = (
    (ValidationFailure, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (CaptureDeviceDenied, status.HTTP_409_CONFLICT),
    (UploadFailure, status.HTTP_502_BAD_GATEWAY),
    (FinalizeFailure, status.HTTP_502_BAD_GATEWAY),
    (StatusUnavailable, status.HTTP_502_BAD_GATEWAY),
)


class DetailsRequest(BaseModel):
    legal_name: Optional[str] = None
    country: Optional[str] = None
    document_type: Optional[DocumentType] = None


class ConsentsRequest(BaseModel):
    name_matches: Optional[bool] = None
    images_clear: Optional[bool] = None
    corners_visible: Optional[bool] = None


class EnterRequest(BaseModel):
    force_resubmit: bool = False


def create_app(
    settings: Optional[Settings] = None,
    *,
    backend: Any = None,
    face_detector: Optional[FaceDetector] = None,
) -> FastAPI:
    """Build the app; ``backend`` must provide storage, finalize and status calls."""
    settings = settings or get_settings()
    owns_backend = backend is None
    backend = backend or BackendHttpClient(settings)
    detector = face_detector or create_face_detector(settings.liveness)

    def _camera_factory(camera_id: int) -> CameraService:
        return CameraService(camera_id, settings.camera)

    registry = ControllerRegistry(
        settings=settings,
        status_source=backend,
        storage=backend,
        finalizer=backend,
        face_detector=detector,
        camera_factory=_camera_factory,
    )

    app = FastAPI(title="idcapture-controller", version="0.1.0")
    app.state.settings = settings
    app.state.registry = registry

    @app.exception_handler(CaptureFlowError)
    async def capture_error_handler(request: Request, exc: CaptureFlowError) -> JSONResponse:
        code = status.HTTP_400_BAD_REQUEST
        for error_type, mapped in _ERROR_STATUS:
            if isinstance(exc, error_type):
                code = mapped
                break
        subject_id = request.path_params.get("subject_id")
        step = None
        if subject_id and subject_id in registry:
            current = registry.get(subject_id).step
            step = current.value if current else None
        return JSONResponse(status_code=code, content={"detail": exc.user_message, "step": step})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """Catch-all exception handler to prevent application crashes."""
        logger.exception(f"Unhandled exception in {request.url.path}: {exc}")
        return PlainTextResponse(
            "Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle request validation errors gracefully."""
        logger.warning(f"Validation error in {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc)},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        try:
            await registry.shutdown()
            detector.close()
            if owns_backend:
                await backend.aclose()
            logger.info("Application shutdown complete")
        except Exception as e:
            logger.exception(f"Error during shutdown: {e}")

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        return JSONResponse({"status": "ok", "face_hint": detector.available})

    @app.get("/debug/performance")
    async def debug_performance() -> JSONResponse:
        """Get real-time CPU and memory usage."""
        try:
            cpu_percent = psutil.cpu_percent(interval=0.1)
            memory = psutil.virtual_memory()

            return JSONResponse({
                "cpu_percent": round(cpu_percent, 1),
                "memory_percent": round(memory.percent, 1),
                "memory_used_mb": round(memory.used / (1024 * 1024), 1),
                "memory_total_mb": round(memory.total / (1024 * 1024), 1),
            })
        except Exception as e:
            logger.error(f"Performance monitoring error: {e}")
            return JSONResponse({"error": str(e)}, status_code=500)

    prefix = "/subjects/{subject_id}/verification"

    @asynccontextmanager
    async def _controller(subject_id: str) -> AsyncIterator[CaptureController]:
        """Controller for a mutating call; dropped afterwards if it ended up idle."""
        controller = registry.get(subject_id)
        try:
            yield controller
        finally:
            await registry.discard_if_idle(subject_id)

    @app.get(prefix)
    async def get_verification(subject_id: str) -> Dict[str, Any]:
        controller = registry.find(subject_id)
        if controller is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No verification in progress")
        return controller.snapshot()

    @app.post(prefix + "/enter")
    async def enter(subject_id: str, payload: Optional[EnterRequest] = None) -> Dict[str, Any]:
        async with _controller(subject_id) as controller:
            await controller.enter(force_resubmit=payload.force_resubmit if payload else False)
            return controller.snapshot()

    @app.post(prefix + "/resubmit")
    async def resubmit(subject_id: str) -> Dict[str, Any]:
        async with _controller(subject_id) as controller:
            await controller.request_resubmit()
            return controller.snapshot()

    @app.post(prefix + "/start")
    async def start(subject_id: str) -> Dict[str, Any]:
        async with _controller(subject_id) as controller:
            await controller.start()
            return controller.snapshot()

    @app.put(prefix + "/details")
    async def details(subject_id: str, payload: DetailsRequest) -> Dict[str, Any]:
        async with _controller(subject_id) as controller:
            await controller.update_details(
                legal_name=payload.legal_name,
                country=payload.country,
                document_type=payload.document_type,
            )
            return controller.snapshot()

    @app.post(prefix + "/advance")
    async def advance(subject_id: str) -> Dict[str, Any]:
        async with _controller(subject_id) as controller:
            await controller.advance()
            return controller.snapshot()

    @app.post(prefix + "/back")
    async def back(subject_id: str) -> Dict[str, Any]:
        async with _controller(subject_id) as controller:
            await controller.back()
            return controller.snapshot()

    @app.post(prefix + "/document")
    async def capture_document(subject_id: str, photo: Optional[UploadFile] = File(None)) -> Dict[str, Any]:
        data = await photo.read() if photo is not None else None
        async with _controller(subject_id) as controller:
            await controller.capture_document(data)
            return controller.snapshot()

    @app.delete(prefix + "/document")
    async def retake_document(subject_id: str) -> Dict[str, Any]:
        async with _controller(subject_id) as controller:
            await controller.retake_document()
            return controller.snapshot()

    @app.post(prefix + "/selfie")
    async def capture_selfie(subject_id: str, photo: Optional[UploadFile] = File(None)) -> Dict[str, Any]:
        data = await photo.read() if photo is not None else None
        async with _controller(subject_id) as controller:
            await controller.capture_selfie(data)
            return controller.snapshot()

    @app.delete(prefix + "/selfie")
    async def retake_selfie(subject_id: str) -> Dict[str, Any]:
        async with _controller(subject_id) as controller:
            await controller.retake_selfie()
            return controller.snapshot()

    @app.put(prefix + "/consents")
    async def consents(subject_id: str, payload: ConsentsRequest) -> Dict[str, Any]:
        async with _controller(subject_id) as controller:
            await controller.set_consents(
                name_matches=payload.name_matches,
                images_clear=payload.images_clear,
                corners_visible=payload.corners_visible,
            )
            return controller.snapshot()

    @app.post(prefix + "/submit")
    async def submit(subject_id: str) -> Dict[str, Any]:
        async with _controller(subject_id) as controller:
            receipt = await controller.submit()
            body = controller.snapshot()
            body["attempt_id"] = receipt.attempt_id
            return body

    @app.post(prefix + "/cancel")
    async def cancel(subject_id: str) -> Dict[str, Any]:
        async with _controller(subject_id) as controller:
            await controller.cancel()
            return controller.snapshot()

    @app.websocket(prefix + "/ws")
    async def ui_socket(ws: WebSocket, subject_id: str) -> None:
        controller = registry.find(subject_id)
        if controller is None:
            await ws.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        await ws.accept()
        queue = controller.register_ui()
        try:
            await ws.send_json({"type": "state", "step": None, "data": controller.snapshot()})
            while True:
                try:
                    event = await queue.get()
                except asyncio.CancelledError:
                    break

                try:
                    await ws.send_json(event.to_payload())
                except Exception as e:
                    logger.debug(f"WebSocket send failed (client disconnected): {e}")
                    break
        except WebSocketDisconnect:
            pass
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Unexpected error in UI websocket: {e}")
        finally:
            controller.unregister_ui(queue)
            await registry.discard_if_idle(subject_id)
            try:
                await ws.close()
            except Exception:
                pass

    return app


def _build_default_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_directory, settings.log_retention_days)
    return create_app(settings)


app = _build_default_app()
