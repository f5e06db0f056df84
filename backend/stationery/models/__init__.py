from .storage import ClientStorageEntry

__all__ = [
    'ClientStorageEntry',
]
