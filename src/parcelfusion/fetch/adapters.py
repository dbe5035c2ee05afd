"""
Provider Adapters

PageAdapter implementations for ArcGIS REST feature queries and Socrata
SODA endpoints, built on a shared requests.Session.
"""
from typing import Any, Dict, List, Optional, Sequence

import requests

from config.settings import settings
from src.parcelfusion.exceptions import TransientFetchError
from src.parcelfusion.fetch.fetcher import Page
from src.parcelfusion.utils.logger import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class HttpAdapter:
    """
    Common HTTP plumbing: session, timeout and status handling.
    """

    def __init__(
        self,
        source_id: str,
        url: str,
        session: Optional[requests.Session] = None,
        timeout: Optional[int] = None
    ):
        self.source_id = source_id
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout or settings.fetch_timeout_seconds

    def _get(self, url: str, params: Dict[str, Any]) -> requests.Response:
        """
        GET with retryable statuses mapped to TransientFetchError.

        Raises:
            TransientFetchError: For rate limiting and server errors
            requests.RequestException: For other HTTP / network failures
        """
        response = self.session.get(url, params=params, timeout=self.timeout)
        if response.status_code in RETRYABLE_STATUS:
            raise TransientFetchError(
                f"HTTP {response.status_code} from {url}",
                status_code=response.status_code
            )
        response.raise_for_status()
        return response

    def _json(self, url: str, params: Dict[str, Any]) -> Any:
        return self._get(url, params).json()


class ArcGISAdapter(HttpAdapter):
    """
    ArcGIS REST ``/query`` endpoint of a FeatureServer or MapServer layer.
    """

    def __init__(
        self,
        source_id: str,
        url: str,
        out_fields: Sequence[str] = ("*",),
        where: str = "1=1",
        out_sr: int = 4326,
        response_format: str = "geojson",
        session: Optional[requests.Session] = None,
        timeout: Optional[int] = None
    ):
        """
        Args:
            source_id: Registry id of the source
            url: Layer query URL (ending in /query)
            out_fields: Attribute fields to return
            where: SQL filter
            out_sr: Output spatial reference wkid
            response_format: "geojson" or "json" (Esri features)
        """
        super().__init__(source_id, url, session, timeout)
        self.out_fields = list(out_fields)
        self.where = where
        self.out_sr = out_sr
        self.response_format = response_format

    def _check_error(self, data: Any) -> Any:
        # ArcGIS reports failures inside a 200 response
        if isinstance(data, dict) and "error" in data:
            error = data["error"] or {}
            code = error.get("code")
            message = f"ArcGIS error {code}: {error.get('message')}"
            if code in RETRYABLE_STATUS:
                raise TransientFetchError(message, status_code=code)
            raise ValueError(message)
        return data

    def count(self) -> Optional[int]:
        data = self._check_error(self._json(self.url, {
            "where": self.where,
            "returnCountOnly": "true",
            "f": "json",
        }))
        return data.get("count") or None

    def fetch_page(self, offset: int, limit: int) -> Page:
        data = self._check_error(self._json(self.url, {
            "where": self.where,
            "outFields": ",".join(self.out_fields),
            "returnGeometry": "true",
            "outSR": self.out_sr,
            "f": self.response_format,
            "resultOffset": offset,
            "resultRecordCount": limit,
        }))
        features: List[Dict[str, Any]] = data.get("features") or []

        # GeoJSON responses nest the flag under properties on some servers
        exceeded = data.get("exceededTransferLimit")
        if exceeded is None:
            exceeded = (data.get("properties") or {}).get("exceededTransferLimit", False)

        return Page(
            offset=offset,
            records=features,
            has_more=bool(exceeded) or len(features) >= limit,
        )

    def change_token(self) -> Optional[str]:
        """Last edit date from the layer metadata, when the server tracks edits."""
        layer_url = self.url.rsplit("/query", 1)[0]
        try:
            info = self._json(layer_url, {"f": "json"})
        except (TransientFetchError, requests.RequestException, ValueError) as e:
            logger.warning("change_token_unavailable", source_id=self.source_id, error=str(e))
            return None

        edit_date = (info.get("editingInfo") or {}).get("lastEditDate")
        return str(edit_date) if edit_date else None


class SocrataAdapter(HttpAdapter):
    """
    Socrata SODA resource endpoint (``/resource/<id>.json``).
    """

    def __init__(
        self,
        source_id: str,
        url: str,
        fields: Sequence[str] = (),
        where: Optional[str] = None,
        order: str = ":id",
        app_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[int] = None
    ):
        super().__init__(source_id, url, session, timeout)
        self.fields = list(fields)
        self.where = where
        self.order = order
        if app_token:
            self.session.headers["X-App-Token"] = app_token

    def _base_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if self.where:
            params["$where"] = self.where
        return params

    def count(self) -> Optional[int]:
        params = self._base_params()
        params["$select"] = "count(*) AS count"
        rows = self._json(self.url, params)
        if not rows:
            return None
        return int(rows[0].get("count", 0)) or None

    def fetch_page(self, offset: int, limit: int) -> Page:
        params = self._base_params()
        if self.fields:
            params["$select"] = ",".join(self.fields)
        params["$order"] = self.order
        params["$limit"] = limit
        params["$offset"] = offset

        rows = self._json(self.url, params) or []
        return Page(offset=offset, records=rows, has_more=len(rows) >= limit)

    def change_token(self) -> Optional[str]:
        """Dataset truth timestamp, else the ETag of a one-row request."""
        try:
            response = self._get(self.url, {"$limit": 1})
        except (TransientFetchError, requests.RequestException) as e:
            logger.warning("change_token_unavailable", source_id=self.source_id, error=str(e))
            return None

        return (
            response.headers.get("X-SODA2-Truth-Last-Modified")
            or response.headers.get("ETag")
        )
