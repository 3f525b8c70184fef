import threading
import time
from collections import OrderedDict


class TTLCache:
    """용량과 만료 시간이 있는 프로세스 내부 캐시

    가득 차면 가장 오래 사용하지 않은 항목부터 버린다.
    """

    def __init__(self, maxsize=256, ttl=600, clock=time.monotonic):
        if maxsize <= 0:
            raise ValueError('maxsize must be positive')
        self.maxsize = maxsize
        self.ttl = ttl
        self._clock = clock
        self._data = OrderedDict()  # key -> (expires_at, value)
        self._lock = threading.Lock()

    def get(self, key, default=None):
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._data[key]
                return default
            self._data.move_to_end(key)
            return value

    def set(self, key, value):
        with self._lock:
            self._data[key] = (self._clock() + self.ttl, value)
            self._data.move_to_end(key)
            while len(self._data) > self.maxsize:
                self._data.popitem(last=False)

    def __contains__(self, key):
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self):
        with self._lock:
            return len(self._data)

    def clear(self):
        with self._lock:
            self._data.clear()


_MISSING = object()
