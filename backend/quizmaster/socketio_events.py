from flask import current_app, request
from flask_socketio import emit, join_room, leave_room
from typing import Any, Dict, Set

from quizmaster import socketio

# sid -> session ids the socket joined, so relay only works from inside a room
_sid_rooms: Dict[str, Set[str]] = {}


def _get_sid() -> str:
    return request.sid  # type: ignore[attr-defined]


def _room(session_id: str) -> str:
    return f"session:{session_id}"


def _session_id(data: Any):
    session_id = (data or {}).get('sessionId') if isinstance(data, dict) else None
    if not session_id:
        emit('error', {'message': 'sessionId is required'})
        return None
    return str(session_id)


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(reason=None):
    _sid_rooms.pop(_get_sid(), None)


def handle_join_session(data):
    session_id = _session_id(data)
    if session_id is None:
        return
    room = _room(session_id)
    join_room(room)
    _sid_rooms.setdefault(_get_sid(), set()).add(session_id)
    current_app.logger.info(f"[ws-join] sid={_get_sid()} room={room}")
    emit('joined', {'room': room, 'sessionId': session_id})


def handle_leave_session(data):
    session_id = _session_id(data)
    if session_id is None:
        return
    room = _room(session_id)
    leave_room(room)
    _sid_rooms.get(_get_sid(), set()).discard(session_id)
    emit('left', {'room': room, 'sessionId': session_id})


def handle_publish(data):
    """Relay a client event to the other sockets observing the same session."""
    session_id = _session_id(data)
    if session_id is None:
        return
    event_name = data.get('eventName')
    if not isinstance(event_name, str) or not event_name:
        emit('error', {'message': 'eventName is required'})
        return
    if session_id not in _sid_rooms.get(_get_sid(), set()):
        emit('error', {'message': 'Join the session before publishing'})
        return
    emit(
        'bus_event',
        {'sessionId': session_id, 'eventName': event_name, 'payload': data.get('payload')},
        to=_room(session_id),
        include_self=False,
    )


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = {
        'connect': handle_connect,
        'disconnect': handle_disconnect,
        'join_session': handle_join_session,
        'leave_session': handle_leave_session,
        'publish': handle_publish,
        'ping': handle_ping,
    }
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        for event, handler in handlers.items():
            socketio.on_event(event, handler, namespace=namespace)
