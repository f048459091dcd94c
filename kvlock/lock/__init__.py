"""Lock package: polling lock, managed lock, dan facade"""

from .base import LockHandle, LockVariant
from .fair import FairLock
from .facade import LockFacade, ManagedVariant, PollingVariant, locked
from .managed import ManagedLock
from .polling import LockRecord, PollingLock

__all__ = [
    'LockHandle', 'LockVariant', 'FairLock', 'LockFacade', 'ManagedVariant',
    'PollingVariant', 'locked', 'ManagedLock', 'LockRecord', 'PollingLock',
]
