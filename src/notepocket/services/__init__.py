"""Services that operate on notes through the storage adapter."""
