import logging
import random
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from divine_wrath.errors import NotFoundError, ValidationError
from divine_wrath.models import Player, Session

logger = logging.getLogger(__name__)

# Excludes look-alike characters (I, O, 0, 1)
ROOM_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
ROOM_CODE_LENGTH = 6


def generate_room_code(rng: random.Random, length: int = ROOM_CODE_LENGTH) -> str:
    return ''.join(rng.choices(ROOM_CODE_ALPHABET, k=length))


def normalize_code(code) -> Optional[str]:
    if not isinstance(code, str) or not code.strip():
        return None
    return code.strip().upper()


class _RoomEntry:
    __slots__ = ('session', 'lock', 'closed')

    def __init__(self, session: Session):
        self.session = session
        self.lock = threading.RLock()
        self.closed = False


class RoomRegistry:
    """Room code -> Session map shared by every connection.

    The map itself is guarded by one lock; each room has its own re-entrant
    lock so commands for one room run strictly one at a time while other
    rooms proceed in parallel. Lock order is always room lock, then map lock.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._rooms: Dict[str, _RoomEntry] = {}

    def create(self, host: Player, code: Optional[str] = None) -> Session:
        host.is_host = True
        with self._lock:
            if code is not None:
                code = normalize_code(code)
                if code is None or code in self._rooms:
                    raise ValidationError('Room code unavailable', context={'code': code})
            else:
                code = generate_room_code(self._rng)
                while code in self._rooms:
                    code = generate_room_code(self._rng)
            session = Session(code=code, players=[host])
            self._rooms[code] = _RoomEntry(session)
        logger.info(f"[room-created] room={code} host={host.identity}")
        return session

    @contextmanager
    def locked(self, code) -> Iterator[Session]:
        """Hold the room's lock for the duration of one command."""
        key = normalize_code(code)
        with self._lock:
            entry = self._rooms.get(key) if key else None
        if entry is None:
            raise NotFoundError('Room not found', context={'code': code})
        with entry.lock:
            if entry.closed:
                raise NotFoundError('Room not found', context={'code': code})
            yield entry.session

    def destroy(self, code: str) -> None:
        """Drop a room. Callers hold the room's lock."""
        with self._lock:
            entry = self._rooms.pop(code, None)
        if entry is not None:
            entry.closed = True
            logger.info(f"[room-destroyed] room={code}")

    def get(self, code) -> Optional[Session]:
        key = normalize_code(code)
        with self._lock:
            entry = self._rooms.get(key) if key else None
        return entry.session if entry else None

    def codes(self) -> List[str]:
        with self._lock:
            return list(self._rooms)

    def codes_for(self, identity: str) -> List[str]:
        with self._lock:
            entries = list(self._rooms.items())
        return [code for code, entry in entries if entry.session.find_player(identity) is not None]

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)

    def __contains__(self, code) -> bool:
        key = normalize_code(code)
        with self._lock:
            return key in self._rooms
