"""Counter stores behind the admission controller.

The controller depends on the WindowStore interface only, so the in-process
store can be replaced by the Redis store for multi-process deployments.
"""

from kazwab_admission.stores.base import WindowStore
from kazwab_admission.stores.memory import InMemoryWindowStore
from kazwab_admission.stores.redis_store import RedisWindowStore

__all__ = ["InMemoryWindowStore", "RedisWindowStore", "WindowStore"]
