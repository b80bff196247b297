"""
Inventory backend client.

Components:
- models: InventoryNode tree snapshots and save results
- client: InventoryClient for tree, file and save-file calls
- watcher: InventoryWatcher for the new-file push channel
"""

from .models import InventoryNode, SaveResult
from .client import InventoryClient
from .watcher import InventoryWatcher, NewFileListener

__all__ = [
    "InventoryNode",
    "SaveResult",
    "InventoryClient",
    "InventoryWatcher",
    "NewFileListener",
]
