import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

# Load environment variables
load_dotenv()

from auth_service import BiometricAuthService
from config import load_config
from errors import InsufficientDataError, ProfileNotFoundError, ShapeMismatchError, VoiceProcessingError
from profile_store import create_store
from schemas import (
    AttemptStats,
    AuthenticateRequest,
    AuthVerdict,
    EnrollRequest,
    EnrollResponse,
    TrainingSampleRequest,
    TrainingSampleResponse,
    VoiceSampleResponse,
    VoiceVerifyResponse,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

service = BiometricAuthService(create_store(), load_config())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    await service.store.connect()
    logger.info(f"Profile store ready: {type(service.store).__name__}")

    yield

    await service.store.disconnect()


app = FastAPI(lifespan=lifespan)

# Enable CORS for the capture UI
from fastapi.middleware.cors import CORSMiddleware

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(exc.errors())})


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/settings")
async def api_get_settings():
    """Effective authentication settings."""
    config = await service.get_config()
    return config.to_settings()


@app.put("/settings")
async def api_update_settings(settings: Dict[str, Any]):
    """Merge a partial settings update."""
    try:
        config = await service.update_settings(settings)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return config.to_settings()


@app.post("/keystroke/samples", response_model=TrainingSampleResponse)
async def api_submit_training_sample(req: TrainingSampleRequest):
    """Store one typed passphrase for enrollment."""
    return await service.submit_training_sample(req.username, req.events, req.typed_text)


@app.post("/keystroke/enroll", response_model=EnrollResponse)
async def api_enroll(req: EnrollRequest):
    """Train and store a keystroke profile from the collected samples."""
    try:
        profile = await service.enroll(req.username, req.model_type, req.seed)
    except (InsufficientDataError, ShapeMismatchError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    return EnrollResponse(
        username=req.username,
        model_type=profile.model_type,
        threshold=profile.threshold,
        training_stats=getattr(profile, "training_stats", None),
    )


@app.post("/keystroke/authenticate", response_model=AuthVerdict)
async def api_authenticate(req: AuthenticateRequest):
    """Authenticate a keystroke attempt."""
    if req.events is None and req.features is None:
        raise HTTPException(status_code=422, detail="Either events or features is required")
    return await service.authenticate(req.username, events=req.events, features=req.features)


@app.get("/profiles/{username}")
async def api_get_profile(username: str):
    """Stored keystroke profile of a user."""
    try:
        profile = await service.get_profile(username)
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return profile.to_storage()


@app.get("/models/{username}")
async def api_get_model(username: str):
    """Serialized autoencoder of a user's profile."""
    try:
        model = await service.get_model(username)
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return model.to_storage()


@app.post("/voice/{username}/samples", response_model=VoiceSampleResponse)
async def api_add_voice_sample(username: str, request: Request):
    """
    Enroll one voice recording (raw audio bytes in the request body).

    Accepts containers libsndfile reads (WAV, FLAC, OGG/Vorbis). WebM/Opus
    from MediaRecorder is rejected with 400; transcode it client-side.
    """
    blob = await request.body()
    try:
        return await service.add_voice_sample(username, blob)
    except VoiceProcessingError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/voice/{username}/verify", response_model=VoiceVerifyResponse)
async def api_verify_voice(username: str, request: Request):
    """Verify a recording against the user's enrolled voice samples (same formats as enrollment)."""
    blob = await request.body()
    try:
        verdict, similarity = await service.verify_voice(username, blob)
    except VoiceProcessingError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return VoiceVerifyResponse(verdict=verdict, similarity=similarity)


@app.get("/attempts", response_model=AttemptStats)
async def api_attempt_stats(username: Optional[str] = None):
    """Attempt log summary, optionally for one user."""
    return await service.attempt_stats(username)
