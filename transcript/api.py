"""FastAPI backend for transcription jobs with a queue and retention."""
import asyncio
import logging
import os
import shutil
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from transcript import database
from transcript.config import Settings
from transcript.database import Job, get_db, init_db, utcnow
from transcript.errors import TranscriptError, TranscriptionJobError, UnknownProviderError
from transcript.formatter import normalize_format, output_extension
from transcript.media import SUPPORTED_EXTENSIONS, media_extension
from transcript.models import TranscriptionOptions
from transcript.orchestrator import Orchestrator
from transcript.providers import available_providers, get_provider, provider_capability

# Configure logging to avoid leaking sensitive data
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Directories for job files
JOBS_DIR = Path(os.getenv("TRANSCRIPT_JOBS_DIR", "jobs"))
JOBS_AUDIO_DIR = JOBS_DIR / "audio"
JOBS_OUTPUT_DIR = JOBS_DIR / "output"
RETENTION = timedelta(hours=2)

MEDIA_TYPES = {
    "text": "text/plain",
    "srt": "application/x-subrip",
    "vtt": "text/vtt",
    "json": "application/json",
}

# Create directories
JOBS_AUDIO_DIR.mkdir(parents=True, exist_ok=True)
JOBS_OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

# Initialize FastAPI app
app = FastAPI(title="Transcript API", version="1.0.0")

# In-memory job queue and worker state
job_queue: asyncio.Queue = asyncio.Queue()
api_keys_cache: Dict[str, str] = {}  # job_id -> api_key (memory only)
worker_task: Optional[asyncio.Task] = None
scheduler: Optional[BackgroundScheduler] = None
settings: Optional[Settings] = None


def get_settings() -> Settings:
    global settings
    if settings is None:
        settings = Settings.from_env()
    return settings


async def process_job(job_id: str, db: Session):
    """Process a transcription job."""
    job = db.query(Job).filter(Job.id == job_id).first()
    if not job:
        logger.error(f"Job {job_id} not found in database")
        return

    try:
        logger.info(f"Processing job {job_id} (provider={job.provider}, diarize={job.diarize})")
        job.status = "processing"
        db.commit()

        job_settings = get_settings()
        api_key = api_keys_cache.get(job_id)
        if api_key:
            job_settings = job_settings.with_api_key(job.provider, api_key)

        options = TranscriptionOptions(
            provider=job.provider,
            language=job.language,
            model=job.model,
            diarize=job.diarize,
            format=job.output_format,
        )
        orchestrator = Orchestrator(get_provider(job.provider, job_settings), job_settings, job_id=job_id)
        output_path = JOBS_OUTPUT_DIR / f"{job_id}{output_extension(job.output_format)}"
        await orchestrator.run_to_file(
            str(JOBS_AUDIO_DIR / job.audio_filename), options, str(output_path)
        )

        # Update job status
        job.status = "completed"
        job.stage = orchestrator.stage.value
        job.transcript_filename = output_path.name
        db.commit()
        logger.info(f"Job {job_id} completed successfully")

    except TranscriptionJobError as e:
        logger.error(f"Job {job_id} failed during {e.stage}: {e.cause}")
        job.status = "failed"
        job.stage = e.stage
        job.error_message = str(e.cause)
        db.commit()
    except TranscriptError as e:
        logger.error(f"Job {job_id} failed: {e}")
        job.status = "failed"
        job.stage = "init"
        job.error_message = str(e)
        db.commit()
    except Exception as e:
        logger.error(f"Job {job_id} failed unexpectedly: {e}")
        # A failed commit leaves the session unusable until rolled back
        db.rollback()
        job.status = "failed"
        job.error_message = str(e)
        db.commit()
    finally:
        # Remove API key from cache once job is done
        api_keys_cache.pop(job_id, None)


async def worker():
    """Background worker to process jobs from the queue."""
    logger.info("Worker started")
    while True:
        job_id = await job_queue.get()
        try:
            # Get a new DB session for this job
            db = database.SessionLocal()
            try:
                await process_job(job_id, db)
            finally:
                db.close()
        except Exception as e:
            logger.error(f"Worker error on job {job_id}: {e}")
        finally:
            job_queue.task_done()


def cleanup_old_jobs():
    """Clean up jobs older than the retention window."""
    logger.info("Running cleanup task for jobs older than %s", RETENTION)
    db = database.SessionLocal()
    try:
        cutoff_time = utcnow() - RETENTION
        old_jobs = db.query(Job).filter(Job.created_at < cutoff_time).all()

        for job in old_jobs:
            logger.info(f"Cleaning up job {job.id} (created at {job.created_at})")

            # Delete audio file
            audio_path = JOBS_AUDIO_DIR / job.audio_filename
            if audio_path.exists():
                audio_path.unlink()

            # Delete transcript file if exists
            if job.transcript_filename:
                transcript_path = JOBS_OUTPUT_DIR / job.transcript_filename
                if transcript_path.exists():
                    transcript_path.unlink()

            db.delete(job)

        db.commit()
        logger.info(f"Cleanup complete: removed {len(old_jobs)} old jobs")
    except Exception as e:
        logger.error(f"Cleanup error: {e}")
        db.rollback()
    finally:
        db.close()


@app.on_event("startup")
async def startup_event():
    """Initialize database and start background worker."""
    global worker_task, scheduler

    init_db()
    logger.info("Database initialized")

    get_settings()
    worker_task = asyncio.create_task(worker())

    # Start cleanup scheduler (runs every 30 minutes)
    scheduler = BackgroundScheduler()
    scheduler.add_job(cleanup_old_jobs, 'interval', minutes=30)
    scheduler.start()
    logger.info("Cleanup scheduler started (runs every 30 minutes)")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    if worker_task:
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass
    if scheduler:
        scheduler.shutdown(wait=False)
    logger.info("Application shutdown complete")


@app.post("/jobs")
async def create_job(
    file: UploadFile = File(...),
    provider: str = Form(...),
    output_format: str = Form("text"),
    language: Optional[str] = Form(None),
    model: Optional[str] = Form(None),
    diarize: bool = Form(False),
    x_provider_api_key: Optional[str] = Header(None, alias="X-Provider-API-Key"),
    db: Session = Depends(get_db)
):
    """Create a new transcription job.

    Args:
        file: Audio/video file to transcribe
        provider: Provider name (see GET /providers)
        output_format: text, srt, vtt or json
        language: Optional language hint
        model: Optional provider model
        diarize: Whether to request speaker labels
        x_provider_api_key: Provider API key (passed in header, NEVER stored);
            defaults to the server's configured key

    Returns:
        Job ID and initial status
    """
    try:
        capability = provider_capability(provider)
    except UnknownProviderError as e:
        raise HTTPException(status_code=400, detail=str(e))

    extension = media_extension(file.filename or "")
    if extension not in SUPPORTED_EXTENSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type '.{extension}'. Supported: {', '.join(SUPPORTED_EXTENSIONS)}"
        )

    if not x_provider_api_key and capability.name not in get_settings().api_keys:
        raise HTTPException(
            status_code=400,
            detail=f"No API key configured for {provider}. Pass it in X-Provider-API-Key header."
        )

    # Generate unique job ID
    job_id = uuid.uuid4().hex[:12]

    # Save uploaded file
    audio_filename = f"{job_id}_{os.path.basename(file.filename)}"
    audio_path = JOBS_AUDIO_DIR / audio_filename

    try:
        with audio_path.open("wb") as buffer:
            shutil.copyfileobj(file.file, buffer)
    except OSError as e:
        logger.error(f"Failed to save audio file: {e}")
        raise HTTPException(status_code=500, detail="Failed to save audio file")

    # Create job in database (API key is NOT stored)
    job = Job(
        id=job_id,
        status="queued",
        audio_filename=audio_filename,
        provider=provider,
        output_format=normalize_format(output_format),
        language=language,
        model=model,
        diarize=diarize,
        created_at=utcnow()
    )
    db.add(job)
    db.commit()

    # Store API key in memory cache only (not persisted)
    if x_provider_api_key:
        api_keys_cache[job_id] = x_provider_api_key

    await job_queue.put(job_id)
    logger.info(f"Created job {job_id} for file {file.filename}")

    return {
        "job_id": job_id,
        "status": job.status,
        "created_at": job.created_at.isoformat()
    }


@app.get("/jobs/{job_id}")
async def get_job_status(job_id: str, db: Session = Depends(get_db)):
    """Get the status of a transcription job."""
    job = db.query(Job).filter(Job.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    response = {
        "job_id": job.id,
        "status": job.status,
        "created_at": job.created_at.isoformat(),
        "provider": job.provider,
        "format": job.output_format,
        "diarize": job.diarize
    }

    if job.status == "failed" and job.error_message:
        response["error"] = job.error_message
        response["stage"] = job.stage

    if job.status == "completed" and job.transcript_filename:
        response["transcript_available"] = True

    return response


@app.get("/jobs/{job_id}/download")
async def download_transcript(job_id: str, db: Session = Depends(get_db)):
    """Download the transcript for a completed job."""
    job = db.query(Job).filter(Job.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    if job.status != "completed":
        raise HTTPException(
            status_code=400,
            detail=f"Job is not completed. Current status: {job.status}"
        )

    if not job.transcript_filename:
        raise HTTPException(status_code=404, detail="Transcript not found")

    transcript_path = JOBS_OUTPUT_DIR / job.transcript_filename
    if not transcript_path.exists():
        raise HTTPException(status_code=404, detail="Transcript file not found")

    return FileResponse(
        path=str(transcript_path),
        filename=job.transcript_filename,
        media_type=MEDIA_TYPES.get(job.output_format, "text/plain")
    )


@app.get("/providers")
async def list_providers():
    """List providers with their size limit and dispatch mode."""
    providers = []
    for name in available_providers():
        capability = provider_capability(name)
        providers.append({
            "name": name,
            "display_name": capability.display_name,
            "max_input_bytes": capability.max_input_bytes,
            "concurrency": capability.concurrency.value,
            "diarization": capability.diarization,
            "configured": name in get_settings().api_keys,
        })
    return {"providers": providers}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "queue_size": job_queue.qsize()
    }
