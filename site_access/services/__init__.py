from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Callable

from ..core.config import Settings, get_settings
from ..store import TableStore, get_store
from ..store.codec import DescriptorCodec
from ..store.repository import AccessRepository, utcnow
from .audit import AuditTrail
from .candidates import CandidatePoolLoader
from .dashboard import DashboardService
from .embedding import EmbeddingProvider, get_embedding_provider
from .favorites import FavoritesService
from .matcher import FaceMatcher, default_descriptor_length, default_threshold
from .people import PeopleService
from .realtime import ChangeFeed, change_feed
from .reconciler import AccessSessionReconciler, Clock
from .recognition import RecognitionService
from .search import PersonSearch
from .sites import SiteService


@dataclass
class AccessServices:
    repo: AccessRepository
    audit: AuditTrail
    loader: CandidatePoolLoader
    matcher: FaceMatcher
    reconciler: AccessSessionReconciler
    recognition: RecognitionService
    search: PersonSearch
    people: PeopleService
    sites: SiteService
    dashboard: DashboardService
    favorites: FavoritesService


def build_services(
    store: TableStore,
    settings: Settings,
    feed: ChangeFeed,
    provider: EmbeddingProvider | None = None,
    clock: Clock = utcnow,
    threshold: float | None = None,
    provider_factory: Callable[[], EmbeddingProvider] | None = None,
) -> AccessServices:
    codec = DescriptorCodec(settings.descriptor_cipher_key, encrypt=settings.descriptor_encryption)
    repo = AccessRepository(store, codec)
    audit = AuditTrail(repo)
    descriptor_length = default_descriptor_length(settings)
    loader = CandidatePoolLoader(repo, descriptor_length=descriptor_length)
    matcher = FaceMatcher(threshold if threshold is not None else default_threshold(settings))
    reconciler = AccessSessionReconciler(
        repo,
        feed,
        audit,
        duplicate_window=timedelta(seconds=settings.duplicate_window_seconds),
        clock=clock,
    )
    return AccessServices(
        repo=repo,
        audit=audit,
        loader=loader,
        matcher=matcher,
        reconciler=reconciler,
        recognition=RecognitionService(
            repo, loader, matcher, reconciler, provider=provider, provider_factory=provider_factory
        ),
        search=PersonSearch(repo),
        people=PeopleService(repo, audit, descriptor_length=descriptor_length),
        sites=SiteService(repo, audit),
        dashboard=DashboardService(repo, default_timezone=settings.default_timezone),
        favorites=FavoritesService(repo, clock=clock),
    )


@lru_cache(maxsize=1)
def get_services() -> AccessServices:
    return build_services(
        get_store(), get_settings(), change_feed, provider_factory=get_embedding_provider
    )


__all__ = ["AccessServices", "build_services", "get_services"]
