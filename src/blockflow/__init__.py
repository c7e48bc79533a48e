"""
Blockflow - backend for a node-based LLM canvas.

Blocks on a board are each bound to one model. Connections between blocks
carry one block's output into another block's context. This package holds
the provider proxy, the context assembler, the credential vault, the drag
coordination used by the canvas and the HTTP API around them.

Example:
    from blockflow import BlockflowConfig, InMemoryGraphStore, ProviderProxy
    from blockflow import ChatService, ContextAssembler

    config = BlockflowConfig.from_env()
    store = InMemoryGraphStore()

    async with ProviderProxy(config=config) as proxy:
        service = ChatService(store, ContextAssembler(store, config.context), proxy)
        async for item in service.send_message("block-1", "Hello", owner_id="u1"):
            ...
"""

from blockflow.adapters.registry import AdapterFactory, AdapterRegistry
from blockflow.canvas import (
    CanvasSyncController,
    DragKind,
    DragPhase,
    DragPositionStore,
    DragSession,
)
from blockflow.config import BlockflowConfig, ContextConfig
from blockflow.context import (
    ContextAssembler,
    ContextItem,
    ContextPayload,
    SourceKind,
    estimate_tokens,
)
from blockflow.errors import (
    BlockflowError,
    ChatError,
    ConfigurationError,
    DragStateError,
    ErrorKind,
    NotFoundError,
    ProxyError,
    VaultError,
)
from blockflow.events import (
    DRAG_END,
    DRAG_START,
    INVALIDATE,
    NOTIFY,
    DragEndEvent,
    DragStartEvent,
    EventBus,
    InvalidateEvent,
    NotifyEvent,
)
from blockflow.memory import MemoryFilter, create_memory_item, format_memory, select_memory
from blockflow.invocation import (
    ChatEvent,
    ChatInvocation,
    ChatMessage,
    ChatResult,
    GenerationParams,
)
from blockflow.model_registry import (
    CostBreakdown,
    ModelCost,
    ModelDefinition,
    ModelRegistry,
    TokenUsage,
)
from blockflow.models import (
    Block,
    BlockType,
    Board,
    ChatReference,
    Connection,
    MemoryItem,
    MemoryScope,
    MemoryType,
    Message,
    MessageMeta,
    MessageRole,
    Position,
    ProviderCredential,
    SourceContext,
    Subscription,
    create_reference,
)
from blockflow.proxy import ProviderProxy
from blockflow.service import ChatService
from blockflow.store import GraphStore, InMemoryGraphStore, SqliteGraphStore
from blockflow.vault import CredentialVault
from blockflow.webhooks import SubscriptionWebhookHandler, verify_signature

__version__ = "0.1.0"

__all__ = [
    # Config
    "BlockflowConfig",
    "ContextConfig",
    # Errors
    "BlockflowError",
    "ChatError",
    "ConfigurationError",
    "DragStateError",
    "ErrorKind",
    "NotFoundError",
    "ProxyError",
    "VaultError",
    # Domain
    "Block",
    "BlockType",
    "Board",
    "ChatReference",
    "Connection",
    "MemoryItem",
    "MemoryScope",
    "MemoryType",
    "Message",
    "MessageMeta",
    "MessageRole",
    "Position",
    "ProviderCredential",
    "SourceContext",
    "Subscription",
    "create_reference",
    # Proxy contract
    "ChatEvent",
    "ChatInvocation",
    "ChatMessage",
    "ChatResult",
    "GenerationParams",
    "ProviderProxy",
    # Adapters
    "AdapterRegistry",
    "AdapterFactory",
    # Model Registry
    "ModelDefinition",
    "ModelCost",
    "ModelRegistry",
    "TokenUsage",
    "CostBreakdown",
    # Context
    "ContextAssembler",
    "ContextItem",
    "ContextPayload",
    "SourceKind",
    "estimate_tokens",
    # Memory
    "MemoryFilter",
    "create_memory_item",
    "format_memory",
    "select_memory",
    # Service
    "ChatService",
    # Storage
    "GraphStore",
    "InMemoryGraphStore",
    "SqliteGraphStore",
    # Vault
    "CredentialVault",
    # Canvas
    "CanvasSyncController",
    "DragKind",
    "DragPhase",
    "DragPositionStore",
    "DragSession",
    # Events
    "EventBus",
    "INVALIDATE",
    "NOTIFY",
    "DRAG_START",
    "DRAG_END",
    "InvalidateEvent",
    "NotifyEvent",
    "DragStartEvent",
    "DragEndEvent",
    # Webhooks
    "SubscriptionWebhookHandler",
    "verify_signature",
]
