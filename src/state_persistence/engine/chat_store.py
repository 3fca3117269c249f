"""Immediate-write persistence lane for chat history.

Chats are stored one record per id (``chat_<id>``) plus an index of ids under
``chat_list``. The index owns membership: an id missing from it does not
exist, even if a stale record is still stored under its key. Index and
record writes are not transactional.
"""

import logging
from typing import Any

from state_persistence.storage.base import StorageBackend, load_json, save_json

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "chat_"
CHAT_LIST_KEY = "chat_list"


class ChatStore:
    """Saves and loads chat instances without debouncing.

    Storage failures (`QuotaExceededError`, `StorageError`) propagate to the
    caller.

    Args:
        storage: Backend shared with, but independent of, the engine's key.
    """

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage

    @staticmethod
    def storage_key(chat_id: str) -> str:
        """Return the storage key for a chat id."""
        return f"{STORAGE_PREFIX}{chat_id}"

    def save_chat(self, chat_id: str, chat: Any) -> None:
        """Write a chat record and add its id to the index.

        Raises:
            ValueError: If `chat_id` is empty or reserved, or `chat` is None.
        """
        self._check_id(chat_id)
        if chat is None:
            raise ValueError("Chat instance is required")

        save_json(self._storage, self.storage_key(chat_id), chat)
        chat_ids = self.load_all_chats()
        if chat_id not in chat_ids:
            chat_ids.append(chat_id)
            save_json(self._storage, CHAT_LIST_KEY, chat_ids)

    def load_chat(self, chat_id: str) -> Any | None:
        """Return the chat record, or None if the id is not indexed or unreadable."""
        if not chat_id or chat_id not in self.load_all_chats():
            return None
        return load_json(self._storage, self.storage_key(chat_id), None)

    def delete_chat(self, chat_id: str) -> None:
        """Remove a chat record and drop its id from the index.

        Raises:
            ValueError: If `chat_id` is empty or reserved.
        """
        self._check_id(chat_id)
        self._storage.remove(self.storage_key(chat_id))
        chat_ids = self.load_all_chats()
        if chat_id in chat_ids:
            chat_ids.remove(chat_id)
            save_json(self._storage, CHAT_LIST_KEY, chat_ids)

    def save_all_chats(self, chat_ids: list[str]) -> None:
        """Replace the index with `chat_ids`.

        Raises:
            ValueError: If `chat_ids` is not a list of strings.
        """
        if not isinstance(chat_ids, list) or not all(isinstance(c, str) for c in chat_ids):
            raise ValueError("Chat IDs must be a list of strings")
        save_json(self._storage, CHAT_LIST_KEY, chat_ids)

    def load_all_chats(self) -> list[str]:
        """Return the indexed chat ids."""
        chat_ids = load_json(self._storage, CHAT_LIST_KEY, [])
        return list(chat_ids) if isinstance(chat_ids, list) else []

    def get_all_chat_instances(self) -> list[Any]:
        """Load every indexed chat, skipping ids whose record is missing."""
        chats = []
        for chat_id in self.load_all_chats():
            chat = load_json(self._storage, self.storage_key(chat_id), None)
            if chat is not None:
                chats.append(chat)
        return chats

    def clear_all_chats(self) -> int:
        """Remove every chat record and the index.

        Returns:
            Number of chat records removed.
        """
        count = 0
        for key in self._storage.keys(STORAGE_PREFIX):
            if key == CHAT_LIST_KEY:
                continue
            self._storage.remove(key)
            count += 1
        self._storage.remove(CHAT_LIST_KEY)
        logger.debug(f"Cleared {count} chat records")
        return count

    @staticmethod
    def _check_id(chat_id: str) -> None:
        if not chat_id or not isinstance(chat_id, str):
            raise ValueError("Chat ID is required")
        if STORAGE_PREFIX + chat_id == CHAT_LIST_KEY:
            raise ValueError(f"Chat ID {chat_id!r} is reserved")
