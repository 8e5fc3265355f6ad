__all__ = (
    "Config",
    "MediaHydrator",
    "RecordSink",
    "MemoryRecordSink",
    "CanonicalMediaRecord",
    "MediaKind",
    "TrackListing",
    # Adapters
    "WikidataClient",
    "MusicBrainzClient",
    "AlbumReconciler",
    "RateLimitedClient",
    "TTLCache",
    "MISS",
    # Album identifiers
    "parse_album_identifier",
    "encode_album_identifier",
    # Errors
    "MediaCanonError",
    "InvalidIdentifier",
    "InvalidAlbumIdentifier",
    "UpstreamUnavailable",
    "NotFound",
    "Blocked",
)

from media_canon.album import AlbumReconciler
from media_canon.album_ids import encode_album_identifier, parse_album_identifier
from media_canon.config import Config
from media_canon.errors import (
    Blocked,
    InvalidAlbumIdentifier,
    InvalidIdentifier,
    MediaCanonError,
    NotFound,
    UpstreamUnavailable,
)
from media_canon.hydration import MediaHydrator, MemoryRecordSink, RecordSink
from media_canon.models import CanonicalMediaRecord, MediaKind, TrackListing
from media_canon.musicbrainz import MusicBrainzClient
from media_canon.rate_limiter import RateLimitedClient
from media_canon.ttl_cache import MISS, TTLCache
from media_canon.wikidata import WikidataClient
