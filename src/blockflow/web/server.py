"""HTTP API server using Starlette."""
from __future__ import annotations

import json
import math
from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from blockflow.adapters.registry import AdapterRegistry
from blockflow.canvas import CanvasSyncController
from blockflow.config import BlockflowConfig
from blockflow.context import ContextAssembler
from blockflow.errors import (
    ChatError,
    ConfigurationError,
    ErrorKind,
    NotFoundError,
    ProxyError,
)
from blockflow.invocation import ChatInvocation
from blockflow.logging import get_logger
from blockflow.model_registry import ModelRegistry
from blockflow.memory import MemoryFilter, create_memory_item, select_memory
from blockflow.models import Block, Board, ChatReference
from blockflow.proxy import ProviderProxy
from blockflow.service import ChatService
from blockflow.store import GraphStore, InMemoryGraphStore, SqliteGraphStore
from blockflow.vault import CredentialVault
from blockflow.webhooks import SIGNATURE_HEADER, SubscriptionWebhookHandler

logger = get_logger("web")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.AUTH_FAILED: 401,
    ErrorKind.VAULT_DECRYPT_FAILED: 401,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.UNSUPPORTED_PROVIDER: 400,
    ErrorKind.CONTEXT_BUDGET_EXCEEDED: 400,
    ErrorKind.PROVIDER_UNAVAILABLE: 502,
    ErrorKind.UNKNOWN: 500,
}

_TRUTHY = ("1", "true", "yes", "on")


def _sse(data: dict[str, Any] | str) -> str:
    payload = data if isinstance(data, str) else json.dumps(data)
    return f"data: {payload}\n\n"


def error_response(error: ChatError) -> JSONResponse:
    """JSON error body with the HTTP status for its kind."""
    headers = {}
    if error.kind is ErrorKind.RATE_LIMITED and error.retry_after is not None:
        headers["Retry-After"] = str(math.ceil(error.retry_after))
    return JSONResponse(
        {"error": error.to_dict()},
        status_code=STATUS_BY_KIND.get(error.kind, 500),
        headers=headers,
    )


def _bad_request(message: str) -> JSONResponse:
    return error_response(ChatError(kind=ErrorKind.INVALID_REQUEST, message=message))


def _user_id(request: Request) -> str | None:
    """Caller identity: set by auth middleware, or the X-User-Id header."""
    return getattr(request.state, "user_id", None) or request.headers.get("x-user-id")


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (ValueError, UnicodeDecodeError):
        raise ValueError("Request body must be JSON") from None
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


def create_app(
    config: BlockflowConfig | None = None,
    store: GraphStore | None = None,
    proxy: ProviderProxy | None = None,
    vault: CredentialVault | None = None,
    models: ModelRegistry | None = None,
) -> Starlette:
    """Create the API Starlette application.

    Args:
        config: Runtime configuration (defaults to the environment)
        store: Graph store (defaults to SQLite when a database path is configured)
        proxy: Provider proxy; created and closed with the app if omitted
        vault: Credential vault (defaults to one built from the encryption key)
        models: Model catalog (defaults to the built-in catalog)
    """
    _config = config or BlockflowConfig.from_env()
    if store is None:
        store = SqliteGraphStore(_config.database_path) if _config.database_path else InMemoryGraphStore()
    _store = store
    if vault is None and _config.encryption_key:
        vault = CredentialVault.from_config(_config)
    _vault = vault
    if models is None:
        models = ModelRegistry()
        models.load_defaults()
    _models = models

    owns_proxy = proxy is None
    _proxy = proxy or ProviderProxy(
        AdapterRegistry.default(_config),
        _config,
        store=_store,
        vault=_vault,
        models=_models,
    )
    _registry = _proxy.registry
    _canvas = CanvasSyncController(_store)
    _assembler = ContextAssembler(_store, _config.context)
    _service = ChatService(_store, _assembler, _proxy, _registry, _models, _config, canvas=_canvas)
    _webhooks = SubscriptionWebhookHandler(_store, _config.webhook_secret)

    def owned_block(block_id: str, user_id: str) -> Block:
        block = _store.get_block(block_id)
        board = _store.get_board(block.board_id)
        if board.owner_id != user_id and not board.is_public:
            raise NotFoundError(f"Block '{block_id}' not found")
        return block

    def owned_board(board_id: str, user_id: str, write: bool = False) -> Board:
        board = _store.get_board(board_id)
        if board.owner_id != user_id and (write or not board.is_public):
            raise NotFoundError(f"Board '{board_id}' not found")
        return board

    async def api_chat(request: Request) -> Response:
        """Normalized proxy: SSE when streaming, JSON otherwise."""
        try:
            body = await _json_body(request)
            invocation = ChatInvocation.from_request(body)
        except ValueError as e:
            return _bad_request(str(e))

        user_id = _user_id(request)
        if invocation.credential_ref:
            try:
                credential = _store.get_credential(invocation.credential_ref)
            except KeyError:
                credential = None
            if credential is None or credential.owner_id != user_id:
                return error_response(
                    ChatError(
                        kind=ErrorKind.AUTH_FAILED,
                        message=f"No API key configured for {invocation.provider}",
                        provider=invocation.provider,
                    )
                )
        elif user_id:
            credential = _store.find_credential(user_id, invocation.provider)
            if credential is not None:
                invocation.credential_ref = credential.id

        if not invocation.stream:
            try:
                result = await _proxy.complete(invocation)
            except ProxyError as e:
                return error_response(e.error)
            return JSONResponse(result.to_dict())

        async def event_generator() -> AsyncIterator[str]:
            async with aclosing(_proxy.dispatch(invocation)) as items:
                async for item in items:
                    yield _sse(item.to_dict())
            yield _sse("[DONE]")

        return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)

    async def api_block_messages(request: Request) -> Response:
        """Send a user message to a block and stream the reply."""
        user_id = _user_id(request)
        if not user_id:
            return error_response(ChatError(kind=ErrorKind.AUTH_FAILED, message="Authentication required"))
        block_id = request.path_params["block_id"]

        try:
            body = await _json_body(request)
            content = body.get("content")
            if not isinstance(content, str) or not content.strip():
                raise ValueError("'content' is required")
            references = [ChatReference.from_dict(r) for r in body.get("references") or []]
            budget = body.get("budget_chars")
            owned_block(block_id, user_id)
            turn = _service.prepare(
                block_id,
                content,
                user_id,
                references=references,
                include_transitive=bool(body.get("include_transitive", False)),
                budget_chars=int(budget) if budget is not None else None,
                params=body.get("params"),
                stream=bool(body.get("stream", True)),
            )
        except NotFoundError as e:
            return JSONResponse({"error": str(e)}, status_code=404)
        except ConfigurationError as e:
            return _bad_request(str(e))
        except (ValueError, KeyError, TypeError) as e:
            return _bad_request(f"Invalid request: {e}")

        summary = turn.payload.to_dict()
        summary.pop("items")
        summary["type"] = "context"
        warning = turn.payload.budget_warning()
        if warning is not None:
            summary["warning"] = warning.message

        if not turn.invocation.stream:
            parts: list[str] = []
            async with aclosing(_service.run(turn)) as items:
                async for item in items:
                    if isinstance(item, ChatError):
                        return error_response(item)
                    parts.append(item.delta)
            return JSONResponse({"content": "".join(parts), "context": summary})

        async def event_generator() -> AsyncIterator[str]:
            yield _sse(summary)
            async with aclosing(_service.run(turn)) as items:
                async for item in items:
                    yield _sse(item.to_dict())
            yield _sse("[DONE]")

        return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)

    async def api_block_context(request: Request) -> JSONResponse:
        """Preview the context a block would be sent."""
        user_id = _user_id(request)
        if not user_id:
            return error_response(ChatError(kind=ErrorKind.AUTH_FAILED, message="Authentication required"))
        block_id = request.path_params["block_id"]
        budget_param = request.query_params.get("budget")
        transitive = request.query_params.get("transitive", "").lower() in _TRUTHY

        try:
            budget = int(budget_param) if budget_param else None
            owned_block(block_id, user_id)
            payload = _assembler.assemble(block_id, budget_chars=budget, include_transitive=transitive)
        except NotFoundError as e:
            return JSONResponse({"error": str(e)}, status_code=404)
        except ValueError as e:
            return _bad_request(str(e))
        return JSONResponse(payload.to_dict())

    async def api_board_memory(request: Request) -> JSONResponse:
        """List a board's memory, or save a new item."""
        user_id = _user_id(request)
        if not user_id:
            return error_response(ChatError(kind=ErrorKind.AUTH_FAILED, message="Authentication required"))
        board_id = request.path_params["board_id"]

        try:
            if request.method == "GET":
                owned_board(board_id, user_id)
                memory_filter = MemoryFilter.from_dict(
                    {
                        "scopes": request.query_params.getlist("scope"),
                        "types": request.query_params.getlist("type"),
                        "keywords": request.query_params.getlist("keyword"),
                        "source_block_id": request.query_params.get("block"),
                    }
                )
                items = select_memory(_store.list_memory(board_id), memory_filter)
                return JSONResponse({"items": [item.to_dict() for item in items]})

            owned_board(board_id, user_id, write=True)
            body = await _json_body(request)
            source_block_id = body.get("source_block_id")
            if source_block_id and _store.get_block(source_block_id).board_id != board_id:
                raise ValueError("source_block_id must be a block on this board")
            keywords = body.get("keywords")
            if keywords is not None and not isinstance(keywords, list):
                raise ValueError("keywords must be a list")
            item = create_memory_item(
                board_id,
                str(body.get("content") or ""),
                type=body.get("type") or "note",
                scope=body.get("scope") or "board",
                user_id=user_id,
                source_block_id=source_block_id,
                source_message_id=body.get("source_message_id"),
                keywords=[str(k) for k in keywords] if keywords is not None else None,
            )
        except NotFoundError as e:
            return JSONResponse({"error": str(e)}, status_code=404)
        except ValueError as e:
            return _bad_request(str(e))

        _store.upsert_memory(item)
        logger.info("Saved %s memory %s on board %s", item.type.value, item.id, board_id)
        return JSONResponse(item.to_dict(), status_code=201)

    async def api_memory_delete(request: Request) -> Response:
        user_id = _user_id(request)
        if not user_id:
            return error_response(ChatError(kind=ErrorKind.AUTH_FAILED, message="Authentication required"))
        try:
            item = _store.get_memory(request.path_params["item_id"])
            owned_board(item.board_id, user_id, write=True)
        except NotFoundError as e:
            return JSONResponse({"error": str(e)}, status_code=404)
        _store.delete_memory(item.id)
        return Response(status_code=204)

    async def api_keys(request: Request) -> JSONResponse:
        """Store a provider API key. Only the hint is ever returned."""
        user_id = _user_id(request)
        if not user_id:
            return error_response(ChatError(kind=ErrorKind.AUTH_FAILED, message="Authentication required"))
        if _vault is None:
            return JSONResponse({"error": "Credential vault is not configured"}, status_code=503)

        try:
            body = await _json_body(request)
            provider = str(body.get("provider") or "").lower()
            if not _registry.is_supported(provider):
                return error_response(
                    ChatError(
                        kind=ErrorKind.UNSUPPORTED_PROVIDER,
                        message=f"Unsupported provider: {provider}",
                        provider=provider,
                    )
                )
            credential = _vault.seal(user_id, provider, str(body.get("api_key") or ""), team_id=body.get("team_id"))
        except ValueError as e:
            return _bad_request(str(e))

        stored = _store.upsert_credential(credential)
        logger.info("Stored %s key %s for %s", provider, stored.key_hint, user_id)
        return JSONResponse(stored.to_public_dict(), status_code=201)

    async def api_key_delete(request: Request) -> Response:
        user_id = _user_id(request)
        if not user_id:
            return error_response(ChatError(kind=ErrorKind.AUTH_FAILED, message="Authentication required"))
        if not _store.delete_credential(user_id, request.path_params["provider"]):
            return JSONResponse({"error": "Key not found"}, status_code=404)
        return Response(status_code=204)

    async def api_webhook(request: Request) -> JSONResponse:
        raw = await request.body()
        result = _webhooks.handle(raw, request.headers.get(SIGNATURE_HEADER))
        return JSONResponse(result.body, status_code=result.status_code)

    async def api_providers(request: Request) -> JSONResponse:
        """List supported providers."""
        providers = [_registry.get_info(name) for name in _registry.list_providers()]
        return JSONResponse({"providers": providers})

    async def api_models(request: Request) -> JSONResponse:
        """List catalog models, optionally for one provider."""
        provider = request.query_params.get("provider")
        entries = _models.list_by_provider(provider) if provider else _models.all()
        return JSONResponse({
            "models": [
                {
                    "id": m.id,
                    "provider": m.provider,
                    "name": m.display_name,
                    "context_window": m.context_window,
                    "capabilities": sorted(m.capabilities),
                }
                for m in entries
            ]
        })

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        yield
        if owns_proxy:
            await _proxy.aclose()

    routes = [
        Route("/api/chat", api_chat, methods=["POST"]),
        Route("/api/blocks/{block_id}/messages", api_block_messages, methods=["POST"]),
        Route("/api/blocks/{block_id}/context", api_block_context, methods=["GET"]),
        Route("/api/boards/{board_id}/memory", api_board_memory, methods=["GET", "POST"]),
        Route("/api/memory/{item_id}", api_memory_delete, methods=["DELETE"]),
        Route("/api/keys", api_keys, methods=["POST"]),
        Route("/api/keys/{provider}", api_key_delete, methods=["DELETE"]),
        Route("/api/webhooks/subscription", api_webhook, methods=["POST"]),
        Route("/api/providers", api_providers, methods=["GET"]),
        Route("/api/models", api_models, methods=["GET"]),
    ]

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.store = _store
    app.state.service = _service
    app.state.canvas = _canvas
    app.state.config = _config
    return app


def run_server(config: BlockflowConfig | None = None, host: str = "127.0.0.1", port: int = 8080) -> None:
    """Run the API server."""
    import uvicorn

    config = config or BlockflowConfig.from_env()
    app = create_app(config=config)
    uvicorn.run(app, host=host, port=port, log_level=config.log_level.lower())
