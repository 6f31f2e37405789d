from typing import Any, Dict, Optional
from .config import settings
from .errors import reported
import logging
import httpx

logger = logging.getLogger(__name__)

DEFAULT_CENTER = {"lat": 28.6139, "lng": 77.2090}
DEFAULT_ZOOM = 11
LIBRARIES = ["places", "geometry"]
ROUTE_STYLE = {"strokeColor": "#3B82F6", "strokeWeight": 4, "strokeOpacity": 0.8}


def _point(p: Dict[str, float]) -> str:
    return f"{p['lat']},{p['lng']}"


class MapsClient:
    """Map SDK settings for the operator UI plus server-side directions lookups."""

    def __init__(self, api_key: str, directions_url: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.directions_url = directions_url
        self.timeout = timeout
        self.transport = transport
        self.loaded = False

    def map_config(self) -> Dict[str, Any]:
        already_loaded = self.loaded
        self.loaded = True
        if not already_loaded:
            logger.info("maps_initialized: libraries=%s", LIBRARIES)
        return {
            "api_key": self.api_key,
            "version": "weekly",
            "libraries": LIBRARIES,
            "center": DEFAULT_CENTER,
            "zoom": DEFAULT_ZOOM,
            "route_style": ROUTE_STYLE,
            "already_loaded": already_loaded,
        }

    async def directions(self, request: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Resolve a route request; any status other than OK means no route."""
        params = {
            "origin": _point(request["origin"]),
            "destination": _point(request["destination"]),
            "mode": request.get("travelMode", "DRIVING").lower(),
            "key": self.api_key,
        }
        waypoints = [_point(w["location"]) for w in request.get("waypoints", [])]
        if waypoints:
            prefix = "optimize:true|" if request.get("optimizeWaypoints") else ""
            params["waypoints"] = prefix + "|".join(waypoints)
        with reported("Failed to fetch directions"):
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.get(self.directions_url, params=params)
                resp.raise_for_status()
        body = resp.json()
        if body.get("status") != "OK":
            logger.warning("directions_not_ok: status=%s", body.get("status"))
            return None
        return body


client = MapsClient(settings.MAPS_API_KEY, settings.MAPS_DIRECTIONS_URL, settings.HTTP_TIMEOUT_SEC)
