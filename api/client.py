"""
Discogs database client for release details and cover images.

Every call reports the remaining request quota taken from the
``X-Discogs-Ratelimit-Remaining`` header. The client never sleeps on its
own; pausing when the quota runs low is the caller's job.
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import requests
from rapidfuzz.distance import Levenshtein

from api.schemas import Album, ReleaseInfo
from utils.exceptions import MetadataLookupError

logger = logging.getLogger(__name__)

SEARCH_URL = "https://api.discogs.com/database/search"
RATE_LIMIT_HEADER = "X-Discogs-Ratelimit-Remaining"

# Discogs disambiguates artists as "Name (2)"
_ARTIST_SUFFIX = re.compile(r"\s*\(\d+\)$")


class DiscogsClient:
    """Looks up albums in the Discogs database."""

    def __init__(
        self,
        key: Optional[str],
        secret: Optional[str],
        user_agent: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            key: Discogs consumer key
            secret: Discogs consumer secret
            user_agent: User agent string identifying this application
            timeout: Request timeout in seconds
            session: Optional requests session (mainly for tests)
        """
        self.key = key
        self.secret = secret
        self.user_agent = user_agent
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers['User-Agent'] = user_agent

        self.total_requests = 0

    def _get(self, url: str, params: Dict[str, Any], query: str) -> Tuple[requests.Response, int]:
        self.total_requests += 1
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise MetadataLookupError(query, str(e))

        if response.status_code != 200:
            raise MetadataLookupError(
                query, f"HTTP {response.status_code}", status_code=response.status_code
            )

        remaining = 0
        header = response.headers.get(RATE_LIMIT_HEADER)
        if header is not None:
            try:
                remaining = int(header)
            except ValueError:
                logger.debug(f"Unparseable rate limit header: {header!r}")
        return response, remaining

    def search_release(self, album: Album) -> Tuple[Dict[str, Any], int]:
        """
        Find the search result closest to "<artist> - <title>".

        Returns:
            Tuple of (best result, remaining request quota)

        Raises:
            MetadataLookupError: If the request fails or nothing matches
        """
        if not self.key or not self.secret:
            raise MetadataLookupError(album.key(), "Discogs key and secret are not configured")

        query = f"{album.artist} - {album.parsed_title}"
        params = {
            'artist': album.artist,
            'release_title': album.parsed_title,
            'format': 'album',
            'type': 'release',
            'key': self.key,
            'secret': self.secret,
        }
        response, remaining = self._get(SEARCH_URL, params, query)

        try:
            results = response.json().get('results', [])
        except ValueError as e:
            raise MetadataLookupError(query, f"invalid JSON: {e}")

        candidates = [r for r in results if isinstance(r, dict) and r.get('title')]
        if not candidates:
            raise MetadataLookupError(query, "no matching release")

        best = min(candidates, key=lambda r: Levenshtein.distance(query, str(r['title'])))
        logger.debug(f"Best match for {query!r}: {best['title']!r}")
        return best, remaining

    def get_release_info(self, album: Album) -> Tuple[ReleaseInfo, int]:
        """
        Look up artist, title and year of an album.

        Returns:
            Tuple of (release info, remaining request quota)
        """
        result, remaining = self.search_release(album)

        title = str(result['title'])
        if " - " not in title:
            raise MetadataLookupError(album.key(), f"unexpected release title {title!r}")

        artist, release_title = title.split(" - ", 1)
        artist = _ARTIST_SUFFIX.sub("", artist)

        info = ReleaseInfo(artist=artist, title=release_title, year=result.get('year'))
        logger.info(f"{album.overview()}: {info.artist}; {info.title}; {info.year}")
        return info, remaining

    def download_cover(self, album: Album) -> Tuple[Optional[Path], int]:
        """
        Save the release cover as ``cover.<ext>`` in the album directory.

        Returns:
            Tuple of (written path or None when the release has no cover, remaining quota)
        """
        result, remaining = self.search_release(album)

        cover_url = result.get('cover_image')
        if not cover_url:
            return None, remaining

        extension = cover_url.rsplit('.', 1)[-1].split('?')[0].lower()
        if not extension or '/' in extension:
            raise MetadataLookupError(album.key(), f"cannot tell cover type of {cover_url}")

        cover_path = album.dir_path / f"cover.{extension}"
        logger.info(f"Downloading {cover_url} to {cover_path}")

        try:
            response = self.session.get(cover_url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise MetadataLookupError(cover_url, str(e))

        try:
            cover_path.write_bytes(response.content)
        except OSError as e:
            raise MetadataLookupError(cover_url, f"cannot write {cover_path}: {e}")

        return cover_path, remaining
