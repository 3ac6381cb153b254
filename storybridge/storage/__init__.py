from storybridge.storage.store import StoreError, StoryStore

__all__ = ["StoreError", "StoryStore"]
