"""Cross-context event bus.

Observers of the same session that share no process memory learn about each
other's changes through a shared medium: every publish writes a timestamped,
sender-tagged record, and the medium's change notifications are fanned out
to the subscribed buses. The bus is a notify-then-refetch signal only. It
drops its own records, delivers each record at most once, and lets any
observer purge records past the retention window, so late joiners miss
expired events and the repository stays the source of truth.
"""

import itertools
import json
import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from quizmaster import db
from quizmaster.errors import RepositoryError, ValidationError
from quizmaster.models import BusEvent

log = logging.getLogger(__name__)

CHANNEL_PREFIX = 'socket:'

TransportHandler = Callable[[str, Dict[str, Any]], None]


@dataclass(frozen=True)
class EventRecord:
    event_name: str
    payload: Any
    sender_id: str
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'eventName': self.event_name,
            'payload': self.payload,
            'senderId': self.sender_id,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventRecord':
        try:
            return cls(
                event_name=str(data['eventName']),
                payload=data.get('payload'),
                sender_id=str(data['senderId']),
                timestamp=float(data['timestamp']),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f'Malformed event record: {exc}')


class EventTransport(ABC):
    """Shared medium carrying event records between buses."""

    @abstractmethod
    def publish(self, channel_key: str, event_name: str, record: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def subscribe(self, event_name: str, handler: TransportHandler) -> str:
        pass

    @abstractmethod
    def unsubscribe(self, token: str) -> None:
        pass

    @abstractmethod
    def purge(self, older_than: float) -> int:
        """Drop records with a timestamp before ``older_than``. Returns the count."""


class MemoryTransport(EventTransport):
    """Key/value medium shared by every bus in one process."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: Dict[str, Dict[str, Any]] = {}
        self._subscriptions: Dict[str, Tuple[str, TransportHandler]] = {}

    def publish(self, channel_key, event_name, record):
        with self._lock:
            self._records[channel_key] = dict(record)
            handlers = [h for name, h in self._subscriptions.values() if name == event_name]
        for handler in handlers:
            handler(channel_key, dict(record))

    def subscribe(self, event_name, handler):
        token = uuid.uuid4().hex
        with self._lock:
            self._subscriptions[token] = (event_name, handler)
        return token

    def unsubscribe(self, token):
        with self._lock:
            self._subscriptions.pop(token, None)

    def purge(self, older_than):
        removed = 0
        with self._lock:
            for key in list(self._records):
                timestamp = self._records[key].get('timestamp')
                if not isinstance(timestamp, (int, float)) or timestamp < older_than:
                    del self._records[key]
                    removed += 1
        return removed

    def keys(self):
        with self._lock:
            return sorted(self._records)


class SqlEventTransport(EventTransport):
    """Records stored in the ``bus_event`` table.

    Another process observes the medium by calling ``poll()``, which delivers
    rows newer than the last one it saw in insertion order. Listening starts
    at the first subscription; rows written before it are never delivered.
    """

    def __init__(self, database=None) -> None:
        self._db = database or db
        self._model = BusEvent
        self._lock = threading.RLock()
        self._subscriptions: Dict[str, Tuple[str, TransportHandler]] = {}
        self._last_id: Optional[int] = None

    def publish(self, channel_key, event_name, record):
        row = self._model(
            channel_key=channel_key,
            event_name=event_name,
            sender_id=record.get('senderId'),
            timestamp=record.get('timestamp'),
            payload=json.dumps(record),
        )
        try:
            self._db.session.add(row)
            self._db.session.commit()
        except SQLAlchemyError as exc:
            self._db.session.rollback()
            raise RepositoryError(f'Could not publish {event_name}: {exc}')

    def subscribe(self, event_name, handler):
        token = uuid.uuid4().hex
        with self._lock:
            if self._last_id is None:
                self._last_id = self._latest_id()
            self._subscriptions[token] = (event_name, handler)
        return token

    def unsubscribe(self, token):
        with self._lock:
            self._subscriptions.pop(token, None)

    def _latest_id(self) -> int:
        try:
            return self._db.session.query(self._db.func.max(self._model.id)).scalar() or 0
        except SQLAlchemyError as exc:
            self._db.session.rollback()
            raise RepositoryError(f'Could not read events: {exc}')

    def poll(self) -> int:
        """Deliver rows added since the previous poll. Returns how many were read."""
        if self._last_id is None:
            self._last_id = self._latest_id()
        try:
            rows = (
                self._model.query
                .filter(self._model.id > self._last_id)
                .order_by(self._model.id)
                .all()
            )
        except SQLAlchemyError as exc:
            self._db.session.rollback()
            raise RepositoryError(f'Could not read events: {exc}')
        for row in rows:
            self._last_id = row.id
            try:
                record = json.loads(row.payload)
            except ValueError:
                log.error('[bus] unreadable event row id=%s', row.id)
                continue
            with self._lock:
                handlers = [h for name, h in self._subscriptions.values() if name == row.event_name]
            for handler in handlers:
                handler(row.channel_key, record)
        return len(rows)

    def purge(self, older_than):
        try:
            removed = self._model.query.filter(self._model.timestamp < older_than).delete()
            self._db.session.commit()
        except SQLAlchemyError as exc:
            self._db.session.rollback()
            raise RepositoryError(f'Could not purge events: {exc}')
        return removed


class EventBus:
    """One observer's view of the shared event medium."""

    def __init__(self, transport: EventTransport, *, sender_id: Optional[str] = None,
                 retention: float = 5.0, clock: Callable[[], float] = time.time) -> None:
        self.transport = transport
        self.sender_id = sender_id or uuid.uuid4().hex
        self.retention = retention
        self._clock = clock
        self._lock = threading.RLock()
        self._handlers: Dict[str, Dict[str, Callable[[Any], None]]] = defaultdict(dict)
        self._handler_events: Dict[str, str] = {}
        self._transport_tokens: Dict[str, str] = {}
        self._seen_order: deque = deque(maxlen=2048)
        self._seen = set()
        self._counter = itertools.count()

    def publish(self, event_name: str, payload: Any = None) -> str:
        timestamp = self._clock()
        record = EventRecord(event_name, payload, self.sender_id, timestamp)
        channel_key = f'{CHANNEL_PREFIX}{int(timestamp * 1000)}:{self.sender_id[:8]}:{next(self._counter)}'
        self.transport.publish(channel_key, event_name, record.to_dict())
        log.debug('[bus-publish] sender=%s event=%s key=%s', self.sender_id, event_name, channel_key)
        self.cleanup()
        return channel_key

    def on(self, event_name: str, handler: Callable[[Any], None]) -> str:
        token = uuid.uuid4().hex
        with self._lock:
            self._handlers[event_name][token] = handler
            self._handler_events[token] = event_name
            if event_name not in self._transport_tokens:
                self._transport_tokens[event_name] = self.transport.subscribe(event_name, self._deliver)
        return token

    def off(self, token: str) -> None:
        with self._lock:
            event_name = self._handler_events.pop(token, None)
            if event_name is None:
                return
            self._handlers[event_name].pop(token, None)
            if not self._handlers[event_name]:
                del self._handlers[event_name]
                transport_token = self._transport_tokens.pop(event_name, None)
                if transport_token:
                    self.transport.unsubscribe(transport_token)

    def close(self) -> None:
        with self._lock:
            for transport_token in self._transport_tokens.values():
                self.transport.unsubscribe(transport_token)
            self._transport_tokens.clear()
            self._handlers.clear()
            self._handler_events.clear()

    def cleanup(self) -> int:
        """Purge expired records. Failures are logged; cleanup is best effort."""
        try:
            return self.transport.purge(self._clock() - self.retention)
        except RepositoryError as exc:
            log.warning('[bus-cleanup] failed: %s', exc)
            return 0

    def _deliver(self, channel_key: str, raw: Dict[str, Any]) -> None:
        try:
            record = EventRecord.from_dict(raw)
        except ValidationError as exc:
            log.error('Error parsing event %s: %s', channel_key, exc)
            return
        if record.sender_id == self.sender_id:
            return
        with self._lock:
            if channel_key in self._seen:
                return
            if len(self._seen_order) == self._seen_order.maxlen:
                self._seen.discard(self._seen_order[0])
            self._seen_order.append(channel_key)
            self._seen.add(channel_key)
            handlers = list(self._handlers.get(record.event_name, {}).values())
        for handler in handlers:
            try:
                handler(record.payload)
            except Exception:
                log.exception('[bus] handler for %s failed', record.event_name)
