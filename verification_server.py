"""
FaceGate Verification Server: HTTP surface for the kiosk UI.

Usage:
    python verification_server.py
    # Or with uvicorn:
    uvicorn verification_server:app --host 0.0.0.0 --port 8000

Images are sent as base64 strings or data URLs. The roster store sends
enrolled embeddings with each request; nothing is persisted here.
"""
import asyncio
import logging
import os
from typing import List, Optional, Union

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from config import Config
from engines.face_verification.embedding import Embedding
from engines.face_verification.errors import (
    DecodeError, ModelLoadFailure, NoFaceDetected, ProcessingError,
)
from services.verification_service import FaceVerificationService

# ---------- Logging ----------
os.makedirs(os.path.dirname(Config.LOG_FILE) or '.', exist_ok=True)
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(Config.LOG_FILE),
    ],
)
logger = logging.getLogger("facegate")


# ---------- Request bodies ----------
class ExtractRequest(BaseModel):
    image: str


class VerifyRequest(BaseModel):
    image: str
    embedding: List[float]
    backend: Optional[str] = None


class RosterEntry(BaseModel):
    id: Union[int, str]
    name: Optional[str] = None
    face_encoding: Optional[List[float]] = None
    face_backend: Optional[str] = None


class MatchRequest(BaseModel):
    image: str
    roster: List[RosterEntry] = Field(default_factory=list)


class EnrollRequest(BaseModel):
    images: List[str]
    min_valid: Optional[int] = Field(None, ge=1)


# Extraction error → HTTP status
ERROR_STATUS = {
    DecodeError: 400,
    NoFaceDetected: 422,
    ModelLoadFailure: 503,
    ProcessingError: 500,
}


def create_app(service: Optional[FaceVerificationService] = None, preload: bool = True) -> FastAPI:
    """Build the FastAPI app around a verification service."""
    service = service or FaceVerificationService.from_config(Config)

    app = FastAPI(title="FaceGate Verification Server")
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.state.service = service
    app.state.preload_task = None

    @app.on_event("startup")
    async def startup():
        logger.info(f"✅ Verification server starting with '{service.backend_name}' backend")
        if preload:
            # Weights download in the background; requests fail closed until loaded
            app.state.preload_task = asyncio.create_task(service.start())

    @app.get("/health")
    async def health():
        return {"status": "ok", "backend": service.backend_name}

    @app.get("/stats")
    async def stats():
        return service.get_stats()

    @app.post("/api/extract")
    async def extract(body: ExtractRequest):
        try:
            embedding = await service.extract_features(body.image)
        except tuple(ERROR_STATUS) as e:
            status = ERROR_STATUS[type(e)]
            logger.warning(f"Extract failed ({type(e).__name__}): {e}")
            raise HTTPException(status_code=status, detail={"error": type(e).__name__, "message": str(e)})
        return embedding.to_dict()

    @app.post("/api/verify")
    async def verify(body: VerifyRequest):
        stored = Embedding.from_any(body.embedding, body.backend or service.backend_name)
        result = await service.verify_face_detailed(body.image, stored)
        return result.to_dict()

    @app.post("/api/match")
    async def match(body: MatchRequest):
        records = [entry.model_dump() for entry in body.roster]
        result = await service.search(body.image, records)
        return result.to_dict()

    @app.post("/api/enroll")
    async def enroll(body: EnrollRequest):
        result = await service.encode_multiple(body.images, min_valid=body.min_valid)
        return result.to_dict()

    @app.post("/api/model/retry")
    async def retry_model():
        loaded = await service.retry_model()
        if not loaded:
            raise HTTPException(status_code=503, detail={"error": "ModelLoadFailure"})
        return {"status": "loaded"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=Config.HOST, port=Config.PORT, log_level="info")
