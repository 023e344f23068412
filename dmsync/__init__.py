"""dmsync: client-side synchronization layer for two-party direct messaging."""
