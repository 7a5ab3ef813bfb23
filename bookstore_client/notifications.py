"""
Local notification store with optimistic read tracking.

Every notification id is in one of three states:

    Unread          as last reported by the server, no local override
    OptimisticRead  marked read locally, API call not confirmed yet
    ConfirmedRead   API call succeeded or the server reported it read

ConfirmedRead is sticky: later fetches can report the notification as unread
(a lagging replica, a stale cache) and it still shows as read. OptimisticRead
also survives fetches until the API call confirms or fails; a failure rolls the
read flag and the unread counter back and re-raises.
"""

import logging
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple, Union

from bookstore_client.errors import BookstoreAPIError
from bookstore_client.notification import Notification, normalize_id
from bookstore_client.services.auth_service import Session
from bookstore_client.services.notifications_api import NotificationsAPI

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


def merge_snapshot(snapshot: Iterable[Notification], optimistic: Set[str],
                   confirmed: Set[str]) -> Tuple[List[Notification], Set[str]]:
    """Overlay local read state onto a server snapshot.

    Returns the merged list and the ids that should move to the confirmed set
    because the server now reports them read. Inputs are not modified, and
    merging the same snapshot again yields the same list.
    """
    merged: List[Notification] = []
    promoted: Set[str] = set()

    for item in snapshot:
        if item.id in confirmed:
            merged.append(item.with_read(True))
        elif item.is_read:
            promoted.add(item.id)
            merged.append(item)
        elif item.id in optimistic:
            merged.append(item.with_read(True))
        else:
            merged.append(item)

    return merged, promoted


class NotificationStore:
    """Cached notifications and unread counter for the signed-in user."""

    def __init__(self, api: NotificationsAPI):
        self.api = api
        self._notifications: List[Notification] = []
        self._optimistic: Set[str] = set()
        self._confirmed: Set[str] = set()
        self._unread_count = 0
        self._is_loading = False
        self._last_error: Optional[str] = None
        self._last_filters: Dict[str, Any] = {}
        self._listeners: List[Listener] = []
        # bumped by reset(); results of calls started earlier are dropped
        self._generation = 0

    # ------------------------- Getters ------------------------- #
    @property
    def notifications(self) -> List[Notification]:
        return list(self._notifications)

    @property
    def unread_count(self) -> int:
        return self._unread_count

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def optimistic_ids(self) -> FrozenSet[str]:
        return frozenset(self._optimistic)

    @property
    def confirmed_ids(self) -> FrozenSet[str]:
        return frozenset(self._confirmed)

    def find(self, notification_id: Union[int, str]) -> Optional[Notification]:
        index = self._index_of(normalize_id(notification_id))
        return self._notifications[index] if index is not None else None

    def unread_notifications(self) -> List[Notification]:
        return [n for n in self._notifications if not n.is_read]

    def notifications_by_category(self, category: str) -> List[Notification]:
        return [n for n in self._notifications if n.category == category]

    # ------------------------- Observers ------------------------- #
    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` after every visible change; returns an unsubscribe function."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def bind_session(self, session: Session) -> Callable[[], None]:
        """Reset whenever the signed-in user changes so state never leaks across sessions."""
        return session.add_identity_listener(self.reset)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Notification listener failed")

    def _set_error(self, message: str) -> None:
        self._last_error = message
        logger.warning(message)
        self._notify()

    def clear_error(self) -> None:
        self._last_error = None

    # ------------------------- Operations ------------------------- #
    async def fetch(self, search: Optional[str] = None, category: Optional[str] = None,
                    is_read: Optional[bool] = None, page: int = 1,
                    limit: Optional[int] = None) -> List[Notification]:
        """Load notifications from the server and merge them with local read state."""
        self._last_filters = {
            "search": search,
            "category": category,
            "is_read": is_read,
            "page": page,
            "limit": limit,
        }
        generation = self._generation
        self._is_loading = True
        self._last_error = None
        self._notify()

        try:
            snapshot = await self.api.list(search=search, category=category, is_read=is_read,
                                           page=page, limit=limit)
        except Exception as exc:
            if not self._is_stale(generation):
                # Previous cache and counter stay as they were
                self._last_error = f"Failed to load notifications: {exc}"
                logger.warning(self._last_error)
            raise
        else:
            if self._is_stale(generation):
                logger.debug("Discarding notifications fetched before the session changed")
                return list(self._notifications)
            merged, promoted = merge_snapshot(snapshot, self._optimistic, self._confirmed)
            self._optimistic -= promoted
            self._confirmed |= promoted
            self._notifications = merged
            logger.debug(
                f"Merged {len(merged)} notifications "
                f"({len(self._optimistic)} optimistic, {len(promoted)} newly confirmed)"
            )
            return list(merged)
        finally:
            if not self._is_stale(generation):
                self._is_loading = False
                self._notify()

    async def mark_as_read(self, notification_id: Union[int, str]) -> None:
        """Show the notification as read immediately, then confirm or roll back."""
        nid = normalize_id(notification_id)
        if not nid:
            raise ValueError("Notification id cannot be empty")

        generation = self._generation
        decremented = self._apply_optimistic_read(nid)

        try:
            server_copy = await self.api.mark_as_read(nid)
        except Exception as exc:
            if not self._is_stale(generation):
                if decremented is not None:
                    self._rollback_read(nid, decremented)
                self._set_error(f"Failed to mark notification as read: {exc}")
            raise

        if self._is_stale(generation):
            logger.debug(f"Ignoring read confirmation for {nid} from a previous session")
            return
        self._confirm_read(nid, server_copy)

    async def mark_all_as_read(self) -> None:
        """Bulk, best-effort: the local update is kept even if the server call fails."""
        generation = self._generation
        ids = [n.id for n in self._notifications]
        self._notifications = [n.with_read(True) for n in self._notifications]
        self._unread_count = 0
        self._notify()

        try:
            await self.api.mark_all_as_read()
        except Exception as exc:
            if not self._is_stale(generation):
                self._set_error(f"Failed to mark all notifications as read: {exc}")
            raise

        if self._is_stale(generation):
            return
        self._optimistic.difference_update(ids)
        self._confirmed.update(ids)
        logger.info(f"Marked {len(ids)} cached notifications as read")

        await self.fetch(**self._last_filters)

    async def refresh_unread_count(self) -> int:
        generation = self._generation
        try:
            count = await self.api.unread_count()
        except Exception as exc:
            if not self._is_stale(generation):
                self._set_error(f"Failed to refresh unread count: {exc}")
            raise

        if not self._is_stale(generation):
            self._unread_count = max(0, count)
            self._notify()
        return self._unread_count

    async def delete(self, notification_id: Union[int, str]) -> None:
        """Remove locally, then on the server. A failed server call does not bring it back."""
        generation = self._generation
        nid = normalize_id(notification_id)
        index = self._index_of(nid)
        if index is not None:
            removed = self._notifications.pop(index)
            if not removed.is_read:
                self._unread_count = max(0, self._unread_count - 1)
        self._optimistic.discard(nid)
        self._confirmed.discard(nid)
        self._notify()

        try:
            await self.api.delete(nid)
        except Exception as exc:
            if not self._is_stale(generation):
                self._set_error(f"Failed to delete notification {nid}: {exc}")
            raise

        await self._resync_unread_count(generation)

    async def delete_all(self) -> None:
        generation = self._generation
        self._notifications = []
        self._optimistic.clear()
        self._confirmed.clear()
        self._unread_count = 0
        self._notify()

        try:
            await self.api.delete_all()
        except Exception as exc:
            if not self._is_stale(generation):
                self._set_error(f"Failed to delete all notifications: {exc}")
            raise

        await self._resync_unread_count(generation)

    def reset(self) -> None:
        """Drop everything; called on sign-in and sign-out."""
        self._generation += 1
        self._notifications = []
        self._optimistic.clear()
        self._confirmed.clear()
        self._unread_count = 0
        self._is_loading = False
        self._last_error = None
        self._last_filters = {}
        logger.debug("Notification store reset")
        self._notify()

    async def _resync_unread_count(self, generation: int) -> None:
        """Follow-up count refresh after a delete; failures only get logged."""
        if self._is_stale(generation):
            return
        try:
            count = await self.api.unread_count()
        except BookstoreAPIError as exc:
            logger.warning(f"Could not refresh unread count after delete: {exc}")
            return
        if not self._is_stale(generation):
            self._unread_count = max(0, count)
            self._notify()

    def _is_stale(self, generation: int) -> bool:
        """True once a reset happened after ``generation`` was read."""
        return generation != self._generation

    # ------------------------- Transitions ------------------------- #
    def _index_of(self, nid: str) -> Optional[int]:
        for index, item in enumerate(self._notifications):
            if item.id == nid:
                return index
        return None

    def _apply_optimistic_read(self, nid: str) -> Optional[bool]:
        """Unread -> OptimisticRead. Returns None if nothing changed, else whether the counter dropped."""
        index = self._index_of(nid)
        if index is None or nid in self._confirmed:
            return None
        current = self._notifications[index]
        if current.is_read:
            return None

        self._notifications[index] = current.with_read(True)
        decremented = self._unread_count > 0
        self._unread_count = max(0, self._unread_count - 1)
        self._optimistic.add(nid)
        self._notify()
        return decremented

    def _rollback_read(self, nid: str, decremented: bool) -> None:
        """OptimisticRead -> Unread after a failed API call."""
        if nid not in self._optimistic:
            # Promoted by a fetch, deleted or reset while the call was in flight
            return
        self._optimistic.discard(nid)

        index = self._index_of(nid)
        if index is not None:
            self._notifications[index] = self._notifications[index].with_read(False)
        if decremented:
            self._unread_count += 1
        logger.info(f"Rolled back optimistic read for notification {nid}")
        self._notify()

    def _confirm_read(self, nid: str, server_copy: Optional[Notification]) -> None:
        """OptimisticRead -> ConfirmedRead after the API call succeeded."""
        self._optimistic.discard(nid)
        self._confirmed.add(nid)

        index = self._index_of(nid)
        if index is not None:
            if server_copy is not None and server_copy.id == nid:
                if not server_copy.is_read:
                    logger.info(f"Server returned notification {nid} as unread after marking it read")
                self._notifications[index] = server_copy.with_read(True)
            else:
                self._notifications[index] = self._notifications[index].with_read(True)

        logger.info(f"Notification {nid} confirmed read")
        self._notify()
