"""REST API routes for Courier."""

import logging
import os

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.py at startup
_transfer_manager = None


def init_routes(transfer_manager) -> None:
    """Inject service dependencies into the routes module."""
    global _transfer_manager
    _transfer_manager = transfer_manager


@router.get("/session")
async def get_session():
    """Return the current session."""
    return _transfer_manager.snapshot().model_dump(mode="json")


# --- Sender ---

class CreateLinkBody(BaseModel):
    file_path: str
    secret: str = ""


@router.post("/link")
async def create_link(body: CreateLinkBody):
    """Start sending a file; the link shows up once candidates are gathered.

    The backend reads the file directly from disk, no upload involved.
    """
    if not os.path.isfile(body.file_path):
        logger.warning(f"Rejecting invalid file path: {body.file_path}")
        raise HTTPException(status_code=400, detail="No valid file selected")

    info = await _transfer_manager.create_link(body.file_path, body.secret)
    return info.model_dump(mode="json")


class AnswerBody(BaseModel):
    token: str


@router.post("/answer")
async def submit_answer(body: AnswerBody):
    """Paste the receiver's counter-signal."""
    info = await _transfer_manager.submit_answer(body.token)
    return info.model_dump(mode="json")


# --- Receiver ---

class OpenLinkBody(BaseModel):
    link: str


@router.post("/link/open")
async def open_link(body: OpenLinkBody):
    """Open a sender's link (or bare token)."""
    info = await _transfer_manager.open_link(body.link)
    return info.model_dump(mode="json")


class SecretBody(BaseModel):
    secret: str


@router.post("/secret")
async def submit_secret(body: SecretBody):
    info = await _transfer_manager.submit_secret(body.secret)
    return info.model_dump(mode="json")


@router.get("/download")
async def download():
    """Serve the file received in this session."""
    path = _transfer_manager.saved_path
    if not path or not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="Nothing received yet")
    return FileResponse(path, filename=os.path.basename(path))


# --- Both ---

@router.post("/reset")
async def reset():
    info = await _transfer_manager.reset()
    return info.model_dump(mode="json")
