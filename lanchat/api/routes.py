"""REST API routes for LAN Chat."""

import logging
import os

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from lanchat.logs import debug_enabled, set_debug

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.py at startup
_node = None


def init_routes(node) -> None:
    """Inject the running node into the routes module."""
    global _node
    _node = node


def _require_peer(address: str):
    peer = _node.registry.get(address)
    if not peer:
        raise HTTPException(status_code=404, detail="Peer not found")
    return peer


# --- Peers ---

@router.get("/peers")
async def list_peers():
    """Return known peers, most recently discovered first."""
    return {"peers": [p.model_dump() for p in _node.registry.snapshot()]}


class ChatBody(BaseModel):
    text: str


@router.post("/peers/{address}/chat")
async def send_chat(address: str, body: ChatBody):
    _require_peer(address)
    if not body.text.strip():
        raise HTTPException(status_code=400, detail="Empty message")

    encrypted = _node.sender.is_encrypted(address)
    error = await _node.send_chat(address, body.text)
    if error:
        raise HTTPException(status_code=502, detail=error.message)
    return {"status": "sent", "encrypted": encrypted}


class FileBody(BaseModel):
    path: str


@router.post("/peers/{address}/file")
async def send_file(address: str, body: FileBody):
    """Send a local file. No upload; the backend reads it from disk."""
    _require_peer(address)
    if not os.path.isfile(body.path):
        raise HTTPException(status_code=400, detail="File not found")

    encrypted = _node.sender.is_encrypted(address)
    status = await _node.send_file(address, body.path)
    return {"status": status.message, "encrypted": encrypted}


# --- Settings ---

class SettingsBody(BaseModel):
    debug: bool | None = None


@router.get("/settings")
async def get_settings():
    return {
        "name": _node.name,
        "encryption": _node.encryption_enabled,
        "debug": debug_enabled(),
    }


@router.put("/settings")
async def update_settings(body: SettingsBody):
    if body.debug is not None:
        set_debug(body.debug)
    return {"status": "updated"}
