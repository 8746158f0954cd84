"""MapReduce coordinator and worker, a Raft peer, and sharding clients."""

__version__ = "0.1.0"