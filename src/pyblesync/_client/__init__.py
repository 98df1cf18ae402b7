"""Internal helpers used by :class:`pyblesync.client.BleSyncClient`."""
