"""Region list for a run.

The directory endpoint returns

    {"regions": [{"localType": "서울", "local": [{"name": "서울특별시", "code": 1100}, ...]}, ...]}

which is flattened, in order, into Region entries. A failure here is fatal
for the run: without the list there is nothing to visit.
"""

import logging
import time

import httpx

from evsubsidy.errors import RegionDirectoryError
from evsubsidy.models import Region

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

MAX_RETRIES = 3
REQUEST_TIMEOUT = 30.0


def flatten_regions(payload: dict) -> list[Region]:
    """Flatten the nested directory payload into Region entries.

    Malformed groups or entries, and entries without a usable integer code,
    are skipped with a warning.
    """
    regions: list[Region] = []
    groups = payload.get("regions")
    if not isinstance(groups, list):
        return regions
    for group in groups:
        if not isinstance(group, dict):
            logger.warning(f"Skipping malformed region group: {group!r}")
            continue
        parent = str(group.get("localType") or "").strip()
        locals_ = group.get("local")
        if not isinstance(locals_, list):
            continue
        for local in locals_:
            if not isinstance(local, dict):
                logger.warning(f"Skipping malformed region entry under '{parent}': {local!r}")
                continue
            name = str(local.get("name") or "").strip()
            try:
                code = int(local.get("code"))
            except (TypeError, ValueError):
                logger.warning(f"Skipping region '{parent} {name}': bad code {local.get('code')!r}")
                continue
            regions.append(Region(parent_area_name=parent, local_area_name=name, code=code))
    return regions


class RegionDirectory:
    """Fetches the region list over plain HTTP."""

    def __init__(self, url: str, client: httpx.Client | None = None, retries: int = MAX_RETRIES):
        self.url = url
        self.retries = retries
        self._owns_client = client is None
        self.client = client or httpx.Client(
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            follow_redirects=True,
            timeout=httpx.Timeout(REQUEST_TIMEOUT, connect=15.0),
        )

    def close(self):
        if self._owns_client:
            self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _get_with_retry(self) -> httpx.Response:
        """GET with exponential backoff; raises RegionDirectoryError when exhausted."""
        last_error = "no response"
        for attempt in range(1, self.retries + 1):
            try:
                logger.debug(f"GET {self.url} (attempt {attempt}/{self.retries})")
                resp = self.client.get(self.url)
                if resp.status_code == 200:
                    return resp
                last_error = f"HTTP {resp.status_code}"
                logger.warning(f"Region directory returned {last_error}")
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(f"Region directory request failed on attempt {attempt}: {last_error}")
            if attempt < self.retries:
                time.sleep(2 ** attempt)
        raise RegionDirectoryError(f"Could not load region directory from {self.url}: {last_error}")

    def fetch(self) -> list[Region]:
        logger.info("Loading region directory...")
        resp = self._get_with_retry()
        try:
            payload = resp.json()
        except ValueError as e:
            raise RegionDirectoryError(f"Region directory is not JSON: {e}") from e
        if not isinstance(payload, dict):
            raise RegionDirectoryError("Region directory payload is not an object")

        regions = flatten_regions(payload)
        if not regions:
            raise RegionDirectoryError("Region directory returned no regions")
        logger.info(f"Loaded {len(regions)} regions")
        return regions


def load_regions(url: str, sample_size: int | None = None) -> list[Region]:
    """Fetch the directory; in sample mode keep only the first `sample_size` regions."""
    with RegionDirectory(url) as directory:
        regions = directory.fetch()
    if sample_size:
        logger.info(f"Sample mode: keeping {sample_size} of {len(regions)} regions")
        return regions[:sample_size]
    return regions
