import json
import logging
import ssl
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import aiohttp
import certifi
from yarl import URL

from dashboard_errors import CKANAPIError, CKANConnectionError


logger = logging.getLogger("ckan-dashboard.client")

USER_AGENT = "CKAN-Admin-Dashboard/1.0"

Params = Optional[Mapping[str, Any]]


def _encode_params(params: Params) -> Optional[Dict[str, str]]:
    # CKAN expects lowercase booleans in query strings
    if params is None:
        return None
    encoded = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        else:
            encoded[key] = str(value)
    return encoded


class CKANAPIClient:
    """CKAN action API client for making HTTP requests"""

    def __init__(self, base_url: str, api_key: Optional[str] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        if self.session is None:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            self.session = aiohttp.ClientSession(connector=aiohttp.TCPConnector(ssl=ssl_context))
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    def action_url(self, action: str) -> str:
        return f"{self.base_url}/api/3/action/{action.strip('/')}"

    def _get_headers(self, json_body: bool = False) -> Dict[str, str]:
        headers = {'User-Agent': USER_AGENT}
        if json_body:
            headers['Content-Type'] = 'application/json'
        if self.api_key:
            headers['Authorization'] = self.api_key
        return headers

    async def call_action(self, action: str, data: Optional[Dict[str, Any]] = None,
                          method: str = "POST", params: Params = None) -> Any:
        """Call a CKAN action and return its ``result``"""
        url = self.action_url(action)
        if method == "GET":
            params = dict(params or {}, **(data or {}))
            data = None

        try:
            start_time = time.time()
            async with self.session.request(
                method, url,
                headers=self._get_headers(json_body=data is not None),
                params=_encode_params(params),
                data=json.dumps(data) if data is not None else None,
            ) as response:
                body = await response.text()
                execution_time = int((time.time() - start_time) * 1000)
                logger.info(f"{method} {action} -> {response.status} ({execution_time} ms)")
                return self._unwrap(action, response.status, body)
        except aiohttp.ClientError as e:
            logger.error(f"HTTP error calling {action}: {e}")
            raise CKANConnectionError(f"HTTP Error: connection to CKAN failed: {e}") from e

    @staticmethod
    def _unwrap(action: str, status: int, body: str) -> Any:
        try:
            payload = json.loads(body)
        except ValueError:
            raise CKANAPIError(f"Invalid response from CKAN for {action}", status=status)

        if not isinstance(payload, dict) or not payload.get('success', False):
            error = payload.get('error', {}) if isinstance(payload, dict) else {}
            if not isinstance(error, dict):
                error = {'message': str(error)}
            message = error.get('message') or 'CKAN request failed'
            raise CKANAPIError(message, error=error, status=status)

        return payload.get('result')

    async def forward(self, action: str, method: str = "POST", params: Params = None,
                      json_body: Any = None,
                      form: Optional[aiohttp.FormData] = None) -> Tuple[int, bytes, str]:
        """Proxy a request to CKAN, returning status, body and content type untouched"""
        url = self.action_url(action)
        headers = self._get_headers(json_body=form is None and json_body is not None)
        if form is not None:
            payload: Union[aiohttp.FormData, str, None] = form
        elif json_body is not None:
            payload = json.dumps(json_body)
        else:
            payload = None

        logger.info(f"Proxying to CKAN: {method} {url}")
        try:
            async with self.session.request(method, url, headers=headers,
                                            params=params, data=payload) as response:
                body = await response.read()
                return response.status, body, response.content_type
        except aiohttp.ClientError as e:
            logger.error(f"HTTP error proxying {action}: {e}")
            raise CKANConnectionError(f"HTTP Error: connection to CKAN failed: {e}") from e

    def is_portal_url(self, url: str) -> bool:
        """True when url shares scheme, host and port with the CKAN portal"""
        try:
            return URL(url).origin() == URL(self.base_url).origin()
        except ValueError:
            return False

    async def fetch_text(self, url: str) -> str:
        """Download a resource file as text"""
        headers = {'User-Agent': USER_AGENT}
        if self.api_key and self.is_portal_url(url):
            headers['Authorization'] = self.api_key
        try:
            async with self.session.get(url, headers=headers) as response:
                response.raise_for_status()
                return await response.text()
        except aiohttp.ClientError as e:
            raise CKANConnectionError(f"Failed to fetch {url}: {e}") from e

    # Dataset operations
    async def list_datasets(self, limit: Optional[int] = None, offset: Optional[int] = None) -> List[str]:
        return await self.call_action("package_list", {"limit": limit, "offset": offset}, method="GET")

    async def get_dataset(self, id: str) -> Dict[str, Any]:
        return await self.call_action("package_show", {"id": id}, method="GET")

    async def create_dataset(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.call_action("package_create", data)

    async def update_dataset(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.call_action("package_update", data)

    async def patch_dataset(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.call_action("package_patch", data)

    async def delete_dataset(self, id: str) -> None:
        return await self.call_action("package_delete", {"id": id})

    async def is_dataset_name_available(self, name: str) -> bool:
        try:
            await self.get_dataset(name)
        except (CKANAPIError, CKANConnectionError):
            return True
        return False

    # Organization, group and user operations
    async def list_organizations(self, all_fields: bool = False) -> List[Any]:
        return await self.call_action("organization_list", {"all_fields": all_fields}, method="GET")

    async def list_groups(self, all_fields: bool = False) -> List[Any]:
        return await self.call_action("group_list", {"all_fields": all_fields}, method="GET")

    async def list_users(self) -> List[Any]:
        return await self.call_action("user_list", method="GET")

    # Resource operations
    async def create_resource(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.call_action("resource_create", data)

    async def upload_resource(self, package_id: str, name: str, filename: str, content: bytes,
                              content_type: Optional[str] = None, description: str = "",
                              format: str = "") -> Dict[str, Any]:
        form = aiohttp.FormData()
        form.add_field("upload", content, filename=filename,
                       content_type=content_type or "application/octet-stream")
        form.add_field("package_id", package_id)
        form.add_field("name", name)
        form.add_field("description", description or "")
        form.add_field("format", format or "")

        status, body, _ = await self.forward("resource_create", form=form)
        return self._unwrap("resource_create", status, body.decode("utf-8", errors="replace"))

    async def delete_resource(self, id: str) -> None:
        return await self.call_action("resource_delete", {"id": id})
