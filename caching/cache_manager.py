"""
Persistent cache of release lookups.

Release details are stored per album key in a JSON file so repeated runs
do not spend the music database's request quota again. The cache also
enforces the cooperative rate limit: after a live request that leaves too
little quota, it pauses before returning.
"""

import json
import logging
import time
from pathlib import Path
from typing import Callable, Dict, Any, Optional

from pydantic import ValidationError

from api.client import DiscogsClient
from api.schemas import Album, ReleaseInfo

logger = logging.getLogger(__name__)


class ReleaseInfoCache:
    """JSON-backed cache of ``ReleaseInfo`` keyed by album key."""

    def __init__(
        self,
        cache_file: Path,
        client: DiscogsClient,
        refresh: bool = False,
        min_remaining: int = 1,
        pause_seconds: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            cache_file: Path to the JSON cache file
            client: Client used for live lookups
            refresh: Ignore cached entries and look everything up again
            min_remaining: Pause once the remaining quota drops to this value
            pause_seconds: Length of the pause
            sleep: Blocking sleep function
        """
        self.cache_file = cache_file
        self.client = client
        self.refresh = refresh
        self.min_remaining = min_remaining
        self.pause_seconds = pause_seconds
        self.sleep = sleep

        self.cache_file.parent.mkdir(parents=True, exist_ok=True)
        self._cache_data = self._load_cache()

        self.stats = {'hits': 0, 'lookups': 0, 'pauses': 0}

    def _load_cache(self) -> Dict[str, Any]:
        """Load cache from file."""
        try:
            if self.cache_file.exists():
                with open(self.cache_file, 'r', encoding='utf-8') as f:
                    cache_data = json.load(f)
                    logger.debug(f"Loaded release cache with {len(cache_data)} entries")
                    return cache_data
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Error loading release cache: {e}")

        return {}

    def _save_cache(self):
        """Save cache to file."""
        try:
            with open(self.cache_file, 'w', encoding='utf-8') as f:
                json.dump(self._cache_data, f, ensure_ascii=False, indent=2)
        except IOError as e:
            logger.warning(f"Error saving release cache: {e}")

    def respect_rate_limit(self, remaining: int) -> None:
        """Pause when the remaining request quota is nearly used up."""
        if remaining <= self.min_remaining:
            logger.info(f"Waiting {self.pause_seconds:.0f}s to avoid rate limit...")
            self.stats['pauses'] += 1
            self.sleep(self.pause_seconds)

    def cached(self, album: Album) -> Optional[ReleaseInfo]:
        entry = self._cache_data.get(album.key())
        if entry is None:
            return None
        try:
            return ReleaseInfo.model_validate(entry)
        except ValidationError as e:
            logger.warning(f"Dropping invalid cache entry for {album.key()}: {e}")
            del self._cache_data[album.key()]
            return None

    def get_release_info(self, album: Album) -> ReleaseInfo:
        """
        Release details of an album, from the cache when possible.

        Raises:
            MetadataLookupError: If a live lookup fails
        """
        if not self.refresh:
            info = self.cached(album)
            if info is not None:
                self.stats['hits'] += 1
                return info

        info, remaining = self.client.get_release_info(album)
        self.stats['lookups'] += 1

        self._cache_data[album.key()] = info.model_dump()
        self._save_cache()

        self.respect_rate_limit(remaining)
        return info
