"""
Live read model over a Mongo collection.

A feed keeps an ordered snapshot of a collection in memory and reloads it
whenever the collection's change stream reports a write.
"""
import threading
from typing import List, Optional

from pymongo.errors import PyMongoError

from database import to_str_id
from logger import get_logger

logger = get_logger("feeds")


class CollectionFeed:
    """Subscription handle exposing `data` and `loading`, opened with start() and closed with stop()."""

    def __init__(self, collection, sort_field: Optional[str] = "name"):
        self.collection = collection
        self.sort_field = sort_field
        self.data: List[dict] = []
        self.loading = True
        self._stream = None
        self._thread: Optional[threading.Thread] = None
        self._stopped = threading.Event()

    @property
    def name(self) -> str:
        return getattr(self.collection, "name", "collection")

    def refresh(self) -> List[dict]:
        try:
            cursor = self.collection.find({})
            if self.sort_field:
                cursor = cursor.sort(self.sort_field, 1)
            self.data = [to_str_id(doc) for doc in cursor]
        except PyMongoError as e:
            logger.error(f"Error fetching {self.name}: {e}")
        finally:
            self.loading = False
        return self.data

    def start(self) -> "CollectionFeed":
        self._stopped.clear()
        self.refresh()
        try:
            self._stream = self.collection.watch()
        except PyMongoError as e:
            logger.warning(f"Change stream unavailable for {self.name}, serving snapshot only: {e}")
            return self
        self._thread = threading.Thread(target=self._listen, name=f"feed-{self.name}", daemon=True)
        self._thread.start()
        return self

    def _listen(self) -> None:
        stream = self._stream
        try:
            for _change in stream:
                if self._stopped.is_set():
                    break
                self.refresh()
        except PyMongoError as e:
            if not self._stopped.is_set():
                logger.error(f"Change stream for {self.name} closed: {e}")

    def stop(self) -> None:
        self._stopped.set()
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
