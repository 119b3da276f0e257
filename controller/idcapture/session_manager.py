"""Per-subject orchestration of the identity capture flow."""
from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from .backend.interfaces import AssetStorage, StatusSnapshot, StatusSource, SubmissionFinalizer
from .compressor import compress_image, make_preview
from .config import Settings, get_settings
from .errors import (
    CaptureDeviceDenied,
    CaptureFlowError,
    StatusUnavailable,
    ValidationFailure,
)
from .sensors.camera import CameraService
from .sensors.face_presence import FaceDetector, LivenessHintMonitor, NullFaceDetector
from .session import CapturedImage, CaptureSession
from .state import (
    CaptureEvent,
    CaptureStep,
    DocumentType,
    LivenessHint,
    VerificationStatus,
    ViewKind,
    capture_instructions,
)
from .state_machine import CAMERA_STEPS, CaptureStateMachine
from .status_resolver import ResolvedView, resolve_view
from .submission import SubmissionOrchestrator, SubmissionReceipt

logger = logging.getLogger(__name__)

SubmittedCallback = Callable[[str, SubmissionReceipt], Awaitable[None]]


class CaptureController:
    """Coordinates status gating, capture steps, cameras, and submission for one subject."""

    def __init__(
        self,
        subject_id: str,
        *,
        status_source: StatusSource,
        storage: AssetStorage,
        finalizer: SubmissionFinalizer,
        settings: Optional[Settings] = None,
        face_detector: Optional[FaceDetector] = None,
        document_camera: Optional[CameraService] = None,
        selfie_camera: Optional[CameraService] = None,
        orchestrator: Optional[SubmissionOrchestrator] = None,
    ) -> None:
        self.subject_id = subject_id
        self.settings = settings or get_settings()
        self._status_source = status_source
        self._orchestrator = orchestrator or SubmissionOrchestrator(
            storage, finalizer, validation=self.settings.validation
        )
        self._face_detector = face_detector or NullFaceDetector()
        self._document_camera = document_camera
        self._selfie_camera = selfie_camera

        self._lock = asyncio.Lock()
        self._ui_subscribers: List[asyncio.Queue[CaptureEvent]] = []
        self._submitted_callbacks: List[SubmittedCallback] = []

        self._status: Optional[StatusSnapshot] = None
        self._view: Optional[ResolvedView] = None
        self._session: Optional[CaptureSession] = None
        self._machine: Optional[CaptureStateMachine] = None
        self._monitor: Optional[LivenessHintMonitor] = None
        self._held_camera: Optional[CameraService] = None
        self._hint: LivenessHint = LivenessHint.READY
        self._camera_denied = False
        self._last_error: Optional[str] = None
        self._submitted = False

    # ------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._session

    @property
    def view(self) -> Optional[ResolvedView]:
        return self._view

    @property
    def status(self) -> Optional[StatusSnapshot]:
        return self._status

    @property
    def step(self) -> Optional[CaptureStep]:
        if self._session is not None:
            return self._session.step
        return CaptureStep.SUBMITTED if self._submitted else None

    @property
    def hint(self) -> LivenessHint:
        return self._hint

    @property
    def camera_denied(self) -> bool:
        return self._camera_denied

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def submitted(self) -> bool:
        return self._submitted

    @property
    def submit_enabled(self) -> bool:
        return self._machine is not None and self._machine.submit_enabled

    @property
    def idle(self) -> bool:
        """No live session and no UI subscribers; safe to drop."""
        return self._session is None and not self._ui_subscribers and not self._lock.locked()

    def snapshot(self) -> Dict[str, Any]:
        session = self._session
        return {
            "subject_id": self.subject_id,
            "status": self._status.status.value if self._status else None,
            "view": self._view.kind.value if self._view else None,
            "comment": self._view.comment if self._view else None,
            "step": self.step.value if self.step else None,
            "session": session.summary() if session else None,
            "instructions": capture_instructions(session.document_type) if session else None,
            "submit_enabled": self.submit_enabled,
            "hint": self._hint.value,
            "camera_denied": self._camera_denied,
            "last_error": self._last_error,
            "submitted": self._submitted,
        }

    # ------------------------------------------------------------
    # UI subscriptions
    # ------------------------------------------------------------

    def register_ui(self) -> asyncio.Queue[CaptureEvent]:
        queue: asyncio.Queue[CaptureEvent] = asyncio.Queue(maxsize=self.settings.ui_event_queue_size)
        self._ui_subscribers.append(queue)
        return queue

    def unregister_ui(self, queue: asyncio.Queue[CaptureEvent]) -> None:
        if queue in self._ui_subscribers:
            self._ui_subscribers.remove(queue)

    def register_submitted_callback(self, callback: SubmittedCallback) -> None:
        self._submitted_callbacks.append(callback)

    async def _broadcast(self, event: CaptureEvent) -> None:
        """Broadcast event to all UI subscribers, dropping the oldest when full."""
        for queue in list(self._ui_subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)

    async def _broadcast_state(self) -> None:
        await self._broadcast(CaptureEvent(type="state", data=self.snapshot(), step=self.step))

    @asynccontextmanager
    async def _reporting(self) -> AsyncIterator[None]:
        """Surface CaptureFlowErrors to the UI, then let them propagate."""
        self._last_error = None
        try:
            yield
        except CaptureFlowError as exc:
            self._last_error = exc.user_message
            logger.warning("capture[%s]: %s", self.subject_id, exc)
            await self._broadcast(
                CaptureEvent(type="error", data={"kind": type(exc).__name__}, step=self.step, error=exc.user_message)
            )
            raise

    # ------------------------------------------------------------
    # Entry guard
    # ------------------------------------------------------------

    async def _fetch_status(self) -> StatusSnapshot:
        try:
            return await self._status_source.get_status(self.subject_id)
        except Exception as exc:
            raise StatusUnavailable(
                "We couldn't load your verification status. Please try again.",
                log_message=f"status query failed: {exc}",
            ) from exc

    async def enter(self, force_resubmit: bool = False) -> ResolvedView:
        """Query status and decide which view the subject sees; opens a session only for CaptureFlow."""
        async with self._lock, self._reporting():
            if self._session is not None and not force_resubmit:
                logger.info("capture[%s]: session already live at %s", self.subject_id, self._session.step.value)
                return self._view or ResolvedView(ViewKind.CAPTURE_FLOW)
            self._status = await self._fetch_status()
            if force_resubmit and self._has_review_comment(self._status):
                # the comment is cleared only through request_resubmit()
                logger.info("capture[%s]: forced entry refused while a review comment is open", self.subject_id)
                force_resubmit = False
            return await self._apply_view(resolve_view(self._status.status, self._status.comment, force_resubmit))

    @staticmethod
    def _has_review_comment(snapshot: StatusSnapshot) -> bool:
        return snapshot.status is VerificationStatus.UNVERIFIED and bool((snapshot.comment or "").strip())

    async def request_resubmit(self) -> ResolvedView:
        """Clear the review comment server-side, then start over at Intro."""
        async with self._lock, self._reporting():
            try:
                await self._status_source.request_resubmission(self.subject_id)
            except Exception as exc:
                raise StatusUnavailable(
                    "We couldn't start a new submission. Please try again.",
                    log_message=f"resubmit request failed: {exc}",
                ) from exc
            self._status = await self._fetch_status()
            if self._has_review_comment(self._status):
                raise StatusUnavailable(
                    "We couldn't start a new submission. Please try again.",
                    log_message="review comment still present after resubmit request",
                )
            return await self._apply_view(resolve_view(self._status.status, self._status.comment, force_resubmit=True))

    async def _apply_view(self, view: ResolvedView) -> ResolvedView:
        await self._discard_session()
        self._view = view
        self._submitted = False
        if view.opens_capture:
            self._session = CaptureSession(subject_id=self.subject_id)
            self._machine = CaptureStateMachine(self._session, self.settings.validation)
            logger.info("capture[%s]: new session at %s", self.subject_id, self._session.step.value)
        else:
            logger.info("capture[%s]: showing %s", self.subject_id, view.kind.value)
        await self._broadcast(
            CaptureEvent(type="view", data={"view": view.kind.value, "comment": view.comment}, step=self.step)
        )
        await self._broadcast_state()
        return view

    # ------------------------------------------------------------
    # Step navigation
    # ------------------------------------------------------------

    def _require_machine(self) -> CaptureStateMachine:
        if self._machine is None or self._session is None:
            raise ValidationFailure("Verification isn't in progress", log_message="no live capture session")
        return self._machine

    async def start(self) -> CaptureStep:
        async with self._lock, self._reporting():
            machine = self._require_machine()
            return await self._move(machine, CaptureStep.DETAILS)

    async def advance(self) -> CaptureStep:
        async with self._lock, self._reporting():
            machine = self._require_machine()
            previous = machine.step
            target = machine.advance()
            await self._on_step_changed(previous, target)
            return target

    async def back(self) -> CaptureStep:
        async with self._lock, self._reporting():
            machine = self._require_machine()
            previous = machine.step
            target = machine.back()
            await self._on_step_changed(previous, target)
            return target

    async def _move(self, machine: CaptureStateMachine, target: CaptureStep) -> CaptureStep:
        previous = machine.step
        machine.transition(target)
        await self._on_step_changed(previous, target)
        return target

    async def update_details(
        self,
        *,
        legal_name: Optional[str] = None,
        country: Optional[str] = None,
        document_type: Optional[DocumentType] = None,
    ) -> None:
        async with self._lock, self._reporting():
            machine = self._require_machine()
            if machine.step is not CaptureStep.DETAILS:
                raise ValidationFailure("Details can only be changed on the details step")
            session = machine.session
            if legal_name is not None:
                session.legal_name = legal_name
            if country is not None:
                session.country = country.strip()
            if document_type is not None:
                try:
                    session.document_type = DocumentType(document_type)
                except ValueError as exc:
                    raise ValidationFailure(
                        "Please choose a supported document type",
                        log_message=f"unknown document type {document_type!r}",
                    ) from exc
            await self._broadcast_state()

    async def set_consents(
        self,
        *,
        name_matches: Optional[bool] = None,
        images_clear: Optional[bool] = None,
        corners_visible: Optional[bool] = None,
    ) -> None:
        async with self._lock, self._reporting():
            session = self._require_machine().session
            consents = session.consents
            if name_matches is not None:
                consents.name_matches = bool(name_matches)
            if images_clear is not None:
                consents.images_clear = bool(images_clear)
            if corners_visible is not None:
                consents.corners_visible = bool(corners_visible)
            await self._broadcast_state()

    # ------------------------------------------------------------
    # Cameras and selfie hint
    # ------------------------------------------------------------

    def _camera_for(self, step: CaptureStep) -> Optional[CameraService]:
        if step is CaptureStep.DOCUMENT_CAPTURE:
            return self._document_camera
        if step is CaptureStep.SELFIE_CAPTURE:
            return self._selfie_camera
        return None

    async def _on_step_changed(self, previous: CaptureStep, current: CaptureStep) -> None:
        if previous is CaptureStep.SELFIE_CAPTURE:
            await self._stop_monitor()
        if previous in CAMERA_STEPS:
            await self._release_camera()
        if current in CAMERA_STEPS:
            await self._acquire_camera(current)
        if current is CaptureStep.SELFIE_CAPTURE:
            await self._start_monitor()
        await self._broadcast_state()

    async def _acquire_camera(self, step: CaptureStep) -> None:
        camera = self._camera_for(step)
        if camera is None:
            return
        try:
            await camera.acquire()
        except CaptureDeviceDenied as exc:
            # stay on the step; capture retries acquisition
            self._camera_denied = True
            self._last_error = exc.user_message
            logger.warning("capture[%s]: %s", self.subject_id, exc)
            await self._broadcast(
                CaptureEvent(type="error", data={"kind": "CaptureDeviceDenied"}, step=step, error=exc.user_message)
            )
            return
        self._camera_denied = False
        self._held_camera = camera

    async def _release_camera(self) -> None:
        camera = self._held_camera
        self._held_camera = None
        if camera is None:
            return
        try:
            await camera.release()
        except Exception as exc:
            logger.warning("Error releasing camera: %s", exc)

    async def _read_selfie_frame(self) -> Any:
        camera = self._held_camera
        if camera is None:
            return None
        return await camera.read_frame()

    async def _on_hint(self, hint: LivenessHint) -> None:
        self._hint = hint
        await self._broadcast(CaptureEvent(type="hint", data={"hint": hint.value}, step=self.step))

    async def _start_monitor(self) -> None:
        detector = self._face_detector if self._selfie_camera is not None else NullFaceDetector()
        self._monitor = LivenessHintMonitor(
            detector, self._read_selfie_frame, self._on_hint, self.settings.liveness
        )
        await self._monitor.start()

    async def _stop_monitor(self) -> None:
        monitor = self._monitor
        self._monitor = None
        if monitor is not None:
            await monitor.stop()
        self._hint = LivenessHint.READY

    # ------------------------------------------------------------
    # Photos
    # ------------------------------------------------------------

    async def _process_photo(self, step: CaptureStep, image_bytes: Optional[bytes]) -> CapturedImage:
        raw = image_bytes
        if raw is None:
            camera = self._camera_for(step)
            if camera is None:
                raise ValidationFailure("Please upload a photo", log_message="no camera configured and no image given")
            raw = await camera.capture_jpeg()
            self._camera_denied = False
            self._held_camera = camera

        cfg = self.settings.compression
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, compress_image, raw, cfg)
        preview = await loop.run_in_executor(None, make_preview, result.data, cfg.preview_dimension)
        logger.info(
            "capture[%s]: %s photo %d -> %d bytes (%dx%d)",
            self.subject_id, step.value, len(raw), len(result.data), result.width, result.height,
        )
        return CapturedImage(
            data=result.data,
            preview=preview,
            width=result.width,
            height=result.height,
            quality=result.quality,
            scale=result.scale,
        )

    def _require_step(self, expected: CaptureStep) -> CaptureSession:
        machine = self._require_machine()
        if machine.step is not expected:
            raise ValidationFailure(
                "That photo can't be taken on this step",
                log_message=f"capture for {expected.value} while at {machine.step.value}",
            )
        return machine.session

    async def capture_document(self, image_bytes: Optional[bytes] = None) -> CapturedImage:
        async with self._lock, self._reporting():
            session = self._require_step(CaptureStep.DOCUMENT_CAPTURE)
            try:
                image = await self._process_photo(CaptureStep.DOCUMENT_CAPTURE, image_bytes)
            except CaptureDeviceDenied:
                self._camera_denied = True
                raise
            session.document_image = image
            await self._broadcast(CaptureEvent(type="capture", data={"kind": "document", "bytes": image.size}, step=self.step))
            await self._broadcast_state()
            return image

    async def capture_selfie(self, image_bytes: Optional[bytes] = None) -> CapturedImage:
        async with self._lock, self._reporting():
            session = self._require_step(CaptureStep.SELFIE_CAPTURE)
            try:
                image = await self._process_photo(CaptureStep.SELFIE_CAPTURE, image_bytes)
            except CaptureDeviceDenied:
                self._camera_denied = True
                raise
            session.selfie_image = image
            await self._broadcast(CaptureEvent(type="capture", data={"kind": "selfie", "bytes": image.size}, step=self.step))
            await self._broadcast_state()
            return image

    async def retake_document(self) -> None:
        async with self._lock, self._reporting():
            self._require_step(CaptureStep.DOCUMENT_CAPTURE).document_image = None
            await self._broadcast_state()

    async def retake_selfie(self) -> None:
        async with self._lock, self._reporting():
            self._require_step(CaptureStep.SELFIE_CAPTURE).selfie_image = None
            await self._broadcast_state()

    # ------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------

    async def submit(self) -> SubmissionReceipt:
        async with self._lock, self._reporting():
            machine = self._require_machine()
            session = machine.session
            machine.begin_submit()
            await self._broadcast_state()
            try:
                receipt = await self._orchestrator.submit(session)
            except BaseException:
                # failed or cancelled; uploads are already undone
                machine.submit_failed()
                await self._broadcast_state()
                raise

            machine.submit_succeeded()
            session.release_images()
            self._session = None
            self._machine = None
            self._submitted = True
            self._status = StatusSnapshot(status=VerificationStatus.PENDING, comment=None)
            self._view = ResolvedView(ViewKind.PENDING_REVIEW)
            logger.info("✅ capture[%s]: verification submitted (attempt=%s)", self.subject_id, receipt.attempt_id)
            await self._broadcast_state()
            await self._broadcast(
                CaptureEvent(
                    type="verification_submitted",
                    data={"attempt_id": receipt.attempt_id},
                    step=CaptureStep.SUBMITTED,
                )
            )
            for callback in list(self._submitted_callbacks):
                try:
                    await callback(self.subject_id, receipt)
                except Exception:
                    logger.exception("Submitted callback failed")
            return receipt

    # ------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------

    async def _discard_session(self) -> None:
        await self._stop_monitor()
        await self._release_camera()
        if self._session is not None:
            self._session.release_images()
        self._session = None
        self._machine = None
        self._camera_denied = False

    async def cancel(self) -> None:
        """Subject backed out; drop the session and free the camera."""
        async with self._lock:
            if self._session is not None:
                logger.info("capture[%s]: cancelled at %s", self.subject_id, self._session.step.value)
            await self._discard_session()
            await self._broadcast_state()

    async def shutdown(self) -> None:
        async with self._lock:
            await self._discard_session()
        self._ui_subscribers.clear()


class ControllerRegistry:
    """One CaptureController per subject, created on first use."""

    def __init__(
        self,
        *,
        settings: Settings,
        status_source: StatusSource,
        storage: AssetStorage,
        finalizer: SubmissionFinalizer,
        face_detector: Optional[FaceDetector] = None,
        camera_factory: Optional[Callable[[int], CameraService]] = None,
    ) -> None:
        self.settings = settings
        self._status_source = status_source
        self._storage = storage
        self._finalizer = finalizer
        self._face_detector = face_detector or NullFaceDetector()
        self._camera_factory = camera_factory
        self._controllers: Dict[str, CaptureController] = {}

    def __contains__(self, subject_id: str) -> bool:
        return subject_id in self._controllers

    def __len__(self) -> int:
        return len(self._controllers)

    def find(self, subject_id: str) -> Optional[CaptureController]:
        """Existing controller for the subject, or None; never creates one."""
        return self._controllers.get(subject_id)

    def get(self, subject_id: str) -> CaptureController:
        controller = self._controllers.get(subject_id)
        if controller is None:
            document_camera = selfie_camera = None
            if self._camera_factory is not None and self.settings.camera.enabled:
                document_camera = self._camera_factory(self.settings.camera.document_camera_id)
                selfie_camera = self._camera_factory(self.settings.camera.selfie_camera_id)
            controller = CaptureController(
                subject_id,
                status_source=self._status_source,
                storage=self._storage,
                finalizer=self._finalizer,
                settings=self.settings,
                face_detector=self._face_detector,
                document_camera=document_camera,
                selfie_camera=selfie_camera,
            )
            self._controllers[subject_id] = controller
        return controller

    async def remove(self, subject_id: str) -> None:
        controller = self._controllers.pop(subject_id, None)
        if controller is not None:
            await controller.shutdown()

    async def discard_if_idle(self, subject_id: str) -> bool:
        """Drop the controller when it holds no session and nobody is listening."""
        controller = self._controllers.get(subject_id)
        if controller is None or not controller.idle:
            return False
        await self.remove(subject_id)
        logger.debug("registry: dropped idle controller for %s (%d left)", subject_id, len(self._controllers))
        return True

    async def shutdown(self) -> None:
        for subject_id in list(self._controllers):
            try:
                await self.remove(subject_id)
            except Exception as e:
                logger.warning("Error shutting down controller %s: %s", subject_id, e)


__all__ = ["CaptureController", "ControllerRegistry"]
