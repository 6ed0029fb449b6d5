"""
Subject resolver registry.

Strategies are listed explicitly in ``RESOLVER_FACTORIES`` and chosen
by the configured ``SUBJECT_RESOLVER`` name.
"""

import logging
from typing import Callable

from omnichannel.config import IdentityConfig
from omnichannel.errors import UnknownStrategyError
from omnichannel.identity.base import SubjectId, SubjectResolver
from omnichannel.identity.phone_resolver import PhoneSubjectResolver, extract_phone
from omnichannel.identity.profile_cache import TTLCache
from omnichannel.identity.segment_resolver import SegmentSubjectResolver

logger = logging.getLogger(__name__)


def _build_phone_resolver(config: IdentityConfig) -> SubjectResolver:
    return PhoneSubjectResolver(map_file=config.subject_map_file)


def _build_segment_resolver(config: IdentityConfig) -> SubjectResolver:
    from omnichannel.identity.segment_client import SegmentClient

    client = SegmentClient(
        write_key=config.segment_write_key,
        profile_token=config.segment_profile_token,
        space_id=config.segment_space_id,
        region=config.segment_region,
    )
    cache: TTLCache = TTLCache(
        ttl_seconds=config.profile_cache_ttl_sec,
        max_entries=config.profile_cache_max_entries,
    )
    return SegmentSubjectResolver(client, cache=cache)


RESOLVER_FACTORIES: dict[str, Callable[[IdentityConfig], SubjectResolver]] = {
    "phone": _build_phone_resolver,
    "segment": _build_segment_resolver,
}


def create_resolver(config: IdentityConfig) -> SubjectResolver:
    """Create the subject resolver named by ``config.resolver``.

    Raises:
        UnknownStrategyError: If the resolver name is not registered.
    """
    factory = RESOLVER_FACTORIES.get(config.resolver)
    if factory is None:
        raise UnknownStrategyError(
            f"Subject resolver '{config.resolver}' not registered. "
            f"Available: {list(RESOLVER_FACTORIES)}"
        )
    logger.info("Using '%s' subject resolver", config.resolver)
    return factory(config)


__all__ = [
    "SubjectId", "SubjectResolver", "PhoneSubjectResolver", "SegmentSubjectResolver",
    "TTLCache", "RESOLVER_FACTORIES", "create_resolver", "extract_phone",
]
