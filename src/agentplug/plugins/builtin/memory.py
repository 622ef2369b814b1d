"""Memory plugin - Conversation history for agents."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from agentplug.config.defaults import DEFAULT_CONFIG_DIR
from agentplug.exceptions import EventDispatchError
from agentplug.plugins.base import PluginContext

MEMORY_FILE = "memories.json"
ROLES = ["user", "assistant", "system"]


class MemoryPlugin:
    """Keeps per-conversation message history.

    Tools:
    - plugin:memory:remember: Store a message for a conversation
    - plugin:memory:recall: Return the most recent messages
    - plugin:memory:forget: Drop a conversation

    Prompts and responses flowing through ``request_output:start`` and
    ``request_output:end`` are recorded automatically.
    """

    config_schema = {
        "persist": {"type": "boolean", "default": False},
        "storage_path": {"type": "string", "description": "Directory for memories.json"},
        "max_messages": {"type": "integer", "default": 1000, "min": 1},
    }

    def __init__(self, config: dict[str, Any], context: PluginContext) -> None:
        self.config = config
        self.context = context
        self.memories: dict[str, list[dict[str, Any]]] = {}
        self._started = False

    @property
    def storage_file(self) -> Path:
        base = self.config.get("storage_path") or DEFAULT_CONFIG_DIR / "memory"
        return Path(base).expanduser() / MEMORY_FILE

    def init(self) -> None:
        """Register memory tools and history handlers."""
        self.context.register_tool(
            "remember",
            self._remember_tool,
            description="Store a memory for a conversation",
            category="memory",
            parameters={
                "conversationId": {
                    "type": "string",
                    "required": True,
                    "description": "Conversation ID",
                },
                "message": {
                    "type": "string",
                    "required": True,
                    "description": "Message to remember",
                },
                "role": {
                    "type": "string",
                    "enum": ROLES,
                    "default": "user",
                    "description": "Message role (user, assistant, system)",
                },
            },
        )

        self.context.register_tool(
            "recall",
            self._recall_tool,
            description="Recall conversation history",
            category="memory",
            parameters={
                "conversationId": {
                    "type": "string",
                    "required": True,
                    "description": "Conversation ID",
                },
                "limit": {
                    "type": "integer",
                    "default": 10,
                    "min": 1,
                    "max": 100,
                    "description": "Number of messages to recall",
                },
            },
        )

        self.context.register_tool(
            "forget",
            self._forget_tool,
            description="Forget a conversation",
            category="memory",
            parameters={
                "conversationId": {
                    "type": "string",
                    "required": True,
                    "description": "Conversation ID",
                },
            },
        )

        self.context.on("request_output:start", self._on_request_start)
        self.context.on("request_output:end", self._on_request_end)

    def on_start(self) -> None:
        if self.config.get("persist"):
            self.load()
        self._started = True
        self.context.logger.info("Memory system started", conversations=len(self.memories))

    def on_stop(self) -> None:
        # A failed load must not overwrite the stored file with empty state.
        if self.config.get("persist") and self._started:
            self.save()

    # Tool handlers receive the wire argument names.

    async def _remember_tool(self, conversationId: str, message: str, role: str = "user") -> dict[str, Any]:  # noqa: N803
        return await self.remember(conversationId, message, role)

    async def _recall_tool(self, conversationId: str, limit: int = 10) -> dict[str, Any]:  # noqa: N803
        return await self.recall(conversationId, limit)

    async def _forget_tool(self, conversationId: str) -> dict[str, Any]:  # noqa: N803
        return await self.forget(conversationId)

    async def _on_request_start(self, payload: dict[str, Any]) -> None:
        conversation_id = payload.get("conversationId")
        prompt = payload.get("prompt")
        if conversation_id and prompt is not None:
            await self.remember(conversation_id, str(prompt), "user")

    async def _on_request_end(self, payload: dict[str, Any]) -> None:
        conversation_id = payload.get("conversationId")
        response = payload.get("response")
        if conversation_id and response is not None:
            await self.remember(conversation_id, str(response), "assistant")

    async def remember(
        self,
        conversation_id: str,
        message: str,
        role: str = "user",
    ) -> dict[str, Any]:
        """Append a message to a conversation.

        Oldest messages are dropped once max_messages is exceeded.

        Returns:
            Dict with success flag and the stored memory
        """
        memory = {
            "role": role,
            "content": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        messages = self.memories.setdefault(conversation_id, [])
        messages.append(memory)

        limit = self.config.get("max_messages")
        if limit and len(messages) > limit:
            del messages[: len(messages) - limit]

        await self._emit("memory:stored", {"conversationId": conversation_id, "memory": memory})
        return {"success": True, "memory": memory}

    async def recall(self, conversation_id: str, limit: int = 10) -> dict[str, Any]:
        """Get the most recent messages of a conversation.

        Returns:
            Dict with the conversation ID, recent messages and total count
        """
        messages = self.memories.get(conversation_id, [])
        recent = messages[-limit:] if limit > 0 else []

        await self._emit(
            "memory:recalled",
            {"conversationId": conversation_id, "count": len(recent)},
        )
        return {
            "conversationId": conversation_id,
            "messages": list(recent),
            "total": len(messages),
        }

    async def forget(self, conversation_id: str) -> dict[str, Any]:
        """Drop a conversation's history."""
        deleted = self.memories.pop(conversation_id, None) is not None
        if deleted:
            await self._emit("memory:forgotten", {"conversationId": conversation_id})
        return {"success": deleted, "conversationId": conversation_id}

    def get_all_conversations(self) -> list[str]:
        return list(self.memories)

    def get_conversation_count(self) -> int:
        return len(self.memories)

    def load(self, path: Optional[Path] = None) -> int:
        """Load persisted memories, replacing the in-memory state.

        Returns:
            Number of conversations loaded
        """
        path = path or self.storage_file
        if not path.exists():
            self.context.logger.debug("No persisted memories", path=str(path))
            return 0

        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Memory file must contain an object: {path}")

        self.memories = {str(k): list(v) for k, v in data.items()}
        self.context.logger.info("Loaded memories", path=str(path), conversations=len(self.memories))
        return len(self.memories)

    def save(self, path: Optional[Path] = None) -> Path:
        """Write memories to disk."""
        path = path or self.storage_file
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.memories, f, indent=2)
        self.context.logger.info("Saved memories", path=str(path), conversations=len(self.memories))
        return path

    async def _emit(self, event_name: str, payload: dict[str, Any]) -> None:
        try:
            await self.context.emit(event_name, payload)
        except EventDispatchError as e:
            self.context.logger.warning("Memory event handlers failed", event_name=event_name, error=str(e))
