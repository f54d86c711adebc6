from .local_store import LocalStore
from .remote import HttpRemoteStore, InProcessRemoteStore, RemoteOrderStore, RemoteStoreError
from .scheduler import PeriodicSync
from .sync_queue import OfflineSaleQueue, SyncStatus, build_pos_sale
from .terminal import PosTerminal

__all__ = [
    'LocalStore',
    'HttpRemoteStore', 'InProcessRemoteStore', 'RemoteOrderStore', 'RemoteStoreError',
    'PeriodicSync',
    'OfflineSaleQueue', 'SyncStatus', 'build_pos_sale',
    'PosTerminal',
]
