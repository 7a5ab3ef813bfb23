import logging
from typing import Any, Dict, List, Optional, Union

import httpx

from bookstore_client.config import settings
from bookstore_client.errors import BookstoreAPIError, DecodeError
from bookstore_client.notification import Notification, normalize_id
from bookstore_client.services.auth_service import Session
from bookstore_client.services.http_client import AuthenticatedHTTPClient

logger = logging.getLogger(__name__)


class NotificationsAPI:
    """Thin wrapper over the backend's /notifications/ endpoints"""

    def __init__(self, client: AuthenticatedHTTPClient, session: Session):
        self.client = client
        self.session = session

    @property
    def token(self) -> Optional[str]:
        return self.session.access_token

    def _unwrap(self, response: httpx.Response, ok_statuses=(200,)) -> Any:
        """Decode the response, raising the matching BookstoreAPIError when it is not usable."""
        result = self.client.decode(response)
        if not result.ok:
            raise result.to_exception()
        if response.status_code not in ok_statuses:
            raise BookstoreAPIError(f"Unexpected status {response.status_code}",
                                    status_code=response.status_code, details=result.data)
        return result.data

    async def list(self, search: Optional[str] = None, category: Optional[str] = None,
                   is_read: Optional[bool] = None, page: int = 1,
                   limit: Optional[int] = None) -> List[Notification]:
        params: Dict[str, str] = {
            "page": str(page),
            "limit": str(limit or settings.notification_page_size),
        }
        if category:
            params["notification_type"] = category
        if is_read is not None:
            params["is_read"] = "true" if is_read else "false"
        if search:
            params["search"] = search

        response = await self.client.get("/notifications/", params=params, token=self.token)
        data = self._unwrap(response)

        # Backend returns either a bare list or a {success, data: [...]} envelope
        if isinstance(data, dict) and "data" in data:
            data = data["data"]
        if data is None:
            return []
        if not isinstance(data, list):
            raise DecodeError(f"Expected a list of notifications, got {type(data).__name__}",
                              status_code=response.status_code, details=data)

        notifications = [Notification.from_dict(item) for item in data]
        logger.debug(f"Fetched {len(notifications)} notifications")
        return notifications

    async def mark_as_read(self, notification_id: Union[int, str]) -> Optional[Notification]:
        """Mark one notification read; returns the server's copy when it sends one."""
        notification_id = normalize_id(notification_id)
        response = await self.client.post(f"/notifications/{notification_id}/mark_as_read/",
                                          token=self.token)
        data = self._unwrap(response)

        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        elif isinstance(data, list):
            data = data[0] if data else None

        if data is None:
            return None
        if isinstance(data, dict) and "id" not in data:
            # Acknowledgement body such as {"success": true}
            return None
        return Notification.from_dict(data)

    async def mark_all_as_read(self) -> None:
        response = await self.client.post("/notifications/mark_all_as_read/", token=self.token)
        self._unwrap(response)

    async def delete(self, notification_id: Union[int, str]) -> None:
        notification_id = normalize_id(notification_id)
        response = await self.client.delete(f"/notifications/{notification_id}/", token=self.token)
        self._unwrap(response, ok_statuses=(200, 204))

    async def delete_all(self) -> int:
        response = await self.client.delete("/notifications/delete_all/", token=self.token)
        data = self._unwrap(response, ok_statuses=(200, 204))
        deleted = data.get("deleted_count", 0) if isinstance(data, dict) else 0
        logger.info(f"Deleted all notifications ({deleted} on server)")
        return deleted

    async def unread_count(self) -> int:
        response = await self.client.get("/notifications/unread_count/", token=self.token)
        data = self._unwrap(response)
        if not isinstance(data, dict):
            raise DecodeError("Expected an object with the unread count",
                              status_code=response.status_code, details=data)

        inner = data.get("data") if isinstance(data.get("data"), dict) else {}
        value = data.get("count", data.get("unread_count", inner.get("unread_count", 0)))
        try:
            return max(0, int(value or 0))
        except (TypeError, ValueError) as exc:
            raise DecodeError(f"Unread count is not a number: {value!r}",
                              status_code=response.status_code, details=data) from exc
