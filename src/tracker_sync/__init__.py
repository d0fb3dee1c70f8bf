"""Peer-replicated issue sync over a dedicated git branch.

The ``sync`` subpackage holds the merge engine, worktree lifecycle,
consistency checks, workspaces and the sync cycle itself.  The top-level
modules provide the issue schema, file format, storage adapter, id
mappings, git transport, configuration and logging.
"""

__version__ = "0.1.0"
