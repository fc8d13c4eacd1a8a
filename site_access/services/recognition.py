from __future__ import annotations

import logging
import threading
from typing import Callable

import numpy as np

from ..core.security import parse_descriptor
from ..exceptions import DuplicateSubmission, NoCandidatesAvailable, NoFaceDetected, NoMatchFound, PersonNotFound
from ..store.repository import AccessRepository
from ..types import AccessAction, Identification, OperationContext, TransitionResult
from .candidates import CandidatePoolLoader
from .embedding import EmbeddingProvider, decode_image
from .matcher import FaceMatcher
from .reconciler import AccessSessionReconciler

logger = logging.getLogger("site_access.recognition")


class RecognitionService:
    """Camera frame -> descriptor -> candidate pool -> match -> optional session transition."""

    def __init__(
        self,
        repo: AccessRepository,
        loader: CandidatePoolLoader,
        matcher: FaceMatcher,
        reconciler: AccessSessionReconciler,
        provider: EmbeddingProvider | None = None,
        provider_factory: Callable[[], EmbeddingProvider] | None = None,
    ) -> None:
        self.repo = repo
        self.loader = loader
        self.matcher = matcher
        self.reconciler = reconciler
        self._provider = provider
        self._provider_factory = provider_factory
        self._provider_lock = threading.Lock()

    @property
    def provider(self) -> EmbeddingProvider | None:
        # Model weights load on first capture only.
        if self._provider is None and self._provider_factory is not None:
            with self._provider_lock:
                if self._provider is None:
                    self._provider = self._provider_factory()
        return self._provider

    def describe(self, frame_bgr: np.ndarray) -> np.ndarray:
        provider = self.provider
        if provider is None:
            raise NoFaceDetected("No embedding provider configured for image capture.")
        descriptor = provider.extract(frame_bgr)
        if descriptor is None:
            raise NoFaceDetected("No face detected. Face the camera and try again.")
        return descriptor

    def describe_image(self, image: bytes | str) -> np.ndarray:
        """Decode an uploaded JPEG/PNG (raw or base64) and extract its descriptor; blocking."""
        return self.describe(decode_image(image))

    def identify(self, ctx: OperationContext, action: AccessAction, frame_bgr: np.ndarray) -> Identification:
        return self.identify_descriptor(ctx, action, self.describe(frame_bgr))

    def identify_descriptor(
        self,
        ctx: OperationContext,
        action: AccessAction,
        descriptor: np.ndarray | list[float],
    ) -> Identification:
        vector = parse_descriptor(descriptor, self.loader.descriptor_length)
        pool = self.loader.load(ctx.site_id, action)
        if not pool:
            if action == AccessAction.ENTRY:
                raise NoCandidatesAvailable("No people with registered biometrics at this site.")
            raise NoCandidatesAvailable("Nobody inside has registered biometrics.")

        match = self.matcher.match(vector, pool)
        if match is None:
            logger.info("No %s match at site %s among %d candidates", action.value, ctx.site_id, len(pool))
            raise NoMatchFound("Face not recognised. Retry or search manually.")

        person = self.repo.get_person(ctx.site_id, match.person_id)
        if person is None:
            raise PersonNotFound(f"Matched person {match.person_id} no longer exists.")

        if action == AccessAction.EXIT:
            open_session_id = pool.open_sessions.get(person.id)
        else:
            open_sessions = self.repo.open_sessions(ctx.site_id, person.id)
            open_session_id = open_sessions[-1].id if open_sessions else None

        logger.info(
            "Identified %s (%s) for %s at site %s, distance %.3f",
            person.full_name,
            person.id,
            action.value,
            ctx.site_id,
            match.distance,
        )
        return Identification(
            person=person,
            match=match,
            inside=open_session_id is not None,
            open_session_id=open_session_id,
        )

    def scan(
        self,
        ctx: OperationContext,
        action: AccessAction,
        frame_bgr: np.ndarray | None = None,
        descriptor: np.ndarray | list[float] | None = None,
        observations: str | None = None,
    ) -> tuple[Identification, TransitionResult]:
        if descriptor is None:
            if frame_bgr is None:
                raise NoFaceDetected("Either a frame or a descriptor is required.")
            descriptor = self.describe(frame_bgr)

        identification = self.identify_descriptor(ctx, action, descriptor)
        try:
            result = self.reconciler.apply(
                ctx,
                action,
                identification.person.id,
                observations=observations,
                session_id=identification.open_session_id if action == AccessAction.EXIT else None,
            )
        except DuplicateSubmission as exc:
            result = TransitionResult(action=action, accepted=False, outcome="duplicate", message=str(exc))
        return identification, result
