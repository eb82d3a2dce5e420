"""
Thin client for the ArcGIS REST endpoints used by delivery tracking: OAuth
tokens, feature layer query/applyEdits and the hosted network solvers.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests
from django.core.cache import cache

from .conf import tracking_setting
from .exceptions import ConfigurationError, ExternalServiceError

LOGGER = logging.getLogger(__name__)

TOKEN_CACHE_KEY = "arcgis-token"
TOKEN_EXPIRY_MARGIN_SECONDS = 5 * 60
WGS84 = 4326


def sql_literal(value: Any) -> str:
    """Quote a value for use inside a feature-service where clause."""
    return "'" + str(value).replace("'", "''") + "'"


def get_token(force_refresh: bool = False) -> str:
    if not force_refresh:
        token = cache.get(TOKEN_CACHE_KEY)
        if token:
            return token

    client_id = tracking_setting("arcgis_client_id")
    client_secret = tracking_setting("arcgis_client_secret")
    if not client_id or not client_secret:
        raise ConfigurationError("ArcGIS client credentials are not configured.")

    payload = _request(
        "post",
        tracking_setting("token_url"),
        data={
            "client_id": client_id,
            "client_secret": client_secret,
            "grant_type": "client_credentials",
        },
    )
    token = payload.get("access_token")
    if not token:
        raise ExternalServiceError("Token response did not include an access token.")

    # Forget the token five minutes before ArcGIS starts rejecting it.
    expires_in = int(payload.get("expires_in", 0))
    timeout = max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
    if timeout:
        cache.set(TOKEN_CACHE_KEY, token, timeout)
    LOGGER.info("Fetched new ArcGIS token valid for %s seconds", timeout)
    return token


def _request(method: str, url: str, **kwargs) -> Dict[str, Any]:
    kwargs.setdefault("timeout", tracking_setting("timeout_seconds"))
    try:
        response = requests.request(method, url, **kwargs)
        response.raise_for_status()
        payload = response.json()
    except (requests.exceptions.RequestException, ValueError) as error:
        LOGGER.warning("ArcGIS request to %s failed: %s", url, error)
        raise ExternalServiceError(f"Request to {url} failed: {error}") from error

    if isinstance(payload, dict) and payload.get("error"):
        error = payload["error"]
        message = error.get("message") if isinstance(error, dict) else error
        LOGGER.warning("ArcGIS service at %s reported an error: %s", url, error)
        raise ExternalServiceError(f"ArcGIS error from {url}: {message}")
    return payload


class FeatureLayer:
    def __init__(self, service_url: str, index: int, token_provider: Callable[[], str] = get_token):
        if not service_url:
            raise ConfigurationError("Feature service URL is not configured.")
        self.service_url = service_url.rstrip("/")
        self.index = index
        self.token_provider = token_provider

    @property
    def url(self) -> str:
        return f"{self.service_url}/{self.index}"

    def query(
        self,
        where: str = "1=1",
        out_fields: str = "*",
        return_geometry: bool = False,
        order_by: Optional[str] = None,
        record_count: Optional[int] = None,
        point: Optional[Dict[str, float]] = None,
        out_sr: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "where": where,
            "outFields": out_fields,
            "returnGeometry": "true" if return_geometry else "false",
            "f": "json",
            "token": self.token_provider(),
        }
        if order_by:
            params["orderByFields"] = order_by
        if record_count is not None:
            params["resultRecordCount"] = record_count
        if point is not None:
            params.update(
                {
                    "geometryType": "esriGeometryPoint",
                    "geometry": f"{point['lng']},{point['lat']}",
                    "inSR": WGS84,
                    "spatialRel": "esriSpatialRelIntersects",
                }
            )
        if out_sr is not None:
            params["outSR"] = out_sr

        payload = _request("get", f"{self.url}/query", params=params)
        return payload.get("features") or []

    def apply_edits(
        self,
        adds: Optional[Iterable[Dict[str, Any]]] = None,
        updates: Optional[Iterable[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        data: Dict[str, Any] = {"f": "json", "token": self.token_provider()}
        if adds is not None:
            data["adds"] = json.dumps(list(adds))
        if updates is not None:
            data["updates"] = json.dumps(list(updates))
        return _request("post", f"{self.url}/applyEdits", data=data)


def solve(url: str, params: Dict[str, Any], token_provider: Callable[[], str] = get_token) -> Dict[str, Any]:
    """Run a hosted network analysis ``solve`` (route or service area)."""
    data = {"f": "json", "token": token_provider()}
    for key, value in params.items():
        if isinstance(value, (dict, list)):
            data[key] = json.dumps(value)
        elif isinstance(value, bool):
            data[key] = "true" if value else "false"
        else:
            data[key] = value
    return _request("post", f"{url.rstrip('/')}/solve", data=data)


def add_results(result: Dict[str, Any]) -> List[Dict[str, Any]]:
    return result.get("addResults") or []


def update_results(result: Dict[str, Any]) -> List[Dict[str, Any]]:
    return result.get("updateResults") or []
