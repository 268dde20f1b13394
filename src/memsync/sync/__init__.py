"""memsync sync -- connections, channels and change propagation.

Architecture::

    protocol.py     JSON message envelope, type and channel names
    registry.py     SubscriptionRegistry (connection → channels)
    connection.py   Connection (outbound queue + writer task)
    manager.py      ConnectionManager (live set + heartbeat)
    broadcast.py    BroadcastEngine (channel fan-out + snapshots)
    sources.py      External sources (directory, HTTP)
    watcher.py      DocumentWatcher (filesystem events for memory_dir)
    detector.py     PollLoop / ChangeDetector
    server.py       SyncServer (composition root + message routing)
"""

from memsync.sync.server import SyncServer

__all__ = ["SyncServer"]
