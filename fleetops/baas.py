"""HTTP side of the backend-as-a-service: storage buckets, serverless
functions and RPC functions. Table access goes through `db` instead."""
from typing import Any, Dict, Iterable, NamedTuple, Optional
from urllib.parse import quote
from .config import settings
import logging
import httpx

logger = logging.getLogger(__name__)

PROFILE_PICTURES_BUCKET = "drivers-profile-pictures"
KYC_DOCUMENTS_BUCKET = "drivers-kyc-documents"
VEHICLE_IMAGES_BUCKET = "vehicle-images"
VEHICLE_DOCUMENTS_BUCKET = "vehicle-documents"

SEND_DRIVER_OTP = "send-driver-otp"
CREATE_DRIVER = "create-driver"


class BackendClient:
    def __init__(self, base_url: str, service_key: str = "", timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        # tests inject httpx.MockTransport here
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    def _auth_headers(self) -> Dict[str, str]:
        if not self.service_key:
            return {}
        return {"apikey": self.service_key, "Authorization": f"Bearer {self.service_key}"}

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{quote(path)}"

    def object_path(self, bucket: str, public_url: Optional[str]) -> Optional[str]:
        """Recover the object path inside `bucket` from one of its public URLs."""
        if not public_url:
            return None
        marker = f"/storage/v1/object/public/{bucket}/"
        if marker not in public_url:
            return None
        return public_url.split(marker, 1)[1]

    async def upload(self, bucket: str, path: str, content: bytes, content_type: Optional[str] = None,
                     upsert: bool = False) -> str:
        headers = self._auth_headers()
        headers["Content-Type"] = content_type or "application/octet-stream"
        if upsert:
            headers["x-upsert"] = "true"
        async with self._client() as client:
            resp = await client.post(f"/storage/v1/object/{bucket}/{quote(path)}", content=content, headers=headers)
            resp.raise_for_status()
        logger.info("storage_upload: bucket=%s path=%s bytes=%d", bucket, path, len(content))
        return self.public_url(bucket, path)

    async def remove(self, bucket: str, paths: Iterable[str]) -> None:
        prefixes = [p for p in paths if p]
        if not prefixes:
            return
        async with self._client() as client:
            resp = await client.request(
                "DELETE", f"/storage/v1/object/{bucket}", json={"prefixes": prefixes}, headers=self._auth_headers()
            )
            resp.raise_for_status()
        logger.info("storage_remove: bucket=%s paths=%s", bucket, prefixes)

    async def invoke(self, function_name: str, payload: Dict[str, Any]) -> Any:
        # serverless functions hold the service-role trust themselves
        async with self._client() as client:
            resp = await client.post(f"/functions/v1/{function_name}", json=payload)
            resp.raise_for_status()
        logger.info("function_invoked: name=%s status=%s", function_name, resp.status_code)
        return resp.json() if resp.content else None

    async def rpc(self, name: str, params: Dict[str, Any]) -> Any:
        async with self._client() as client:
            resp = await client.post(f"/rest/v1/rpc/{name}", json=params, headers=self._auth_headers())
            resp.raise_for_status()
        logger.debug("rpc_called: name=%s", name)
        return resp.json() if resp.content else None


client = BackendClient(settings.BACKEND_URL, settings.BACKEND_SERVICE_KEY, settings.HTTP_TIMEOUT_SEC)


class Upload(NamedTuple):
    """A file received from the operator, read into memory."""
    filename: Optional[str]
    content_type: Optional[str]
    content: bytes


def file_extension(filename: Optional[str], default: str = "bin") -> str:
    if filename and "." in filename:
        return filename.rsplit(".", 1)[1].lower()
    return default
