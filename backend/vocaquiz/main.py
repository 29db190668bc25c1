from pathlib import Path
from logging.handlers import RotatingFileHandler
import logging
import os

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from .db import Base, engine, ensure_schema
from .settings import settings
from .storage import MEDIA_ROUTE
from .routers import auth
from .routers import quizzes
from .routers import shares
from .routers import results

logger = logging.getLogger("vocaquiz")


def setup_logging():
	level = getattr(logging, settings.log_level.upper(), logging.INFO)
	logger.setLevel(level)
	if not logger.handlers:
		os.makedirs(settings.log_dir, exist_ok=True)
		log_path = os.path.join(settings.log_dir, settings.log_file)
		file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3)
		file_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
		logger.addHandler(file_handler)
	# Root logger for uvicorn and library output on the console
	logging.basicConfig(level=level)


setup_logging()

STORAGE_DIR = Path(settings.storage_dir).resolve()
STORAGE_DIR.mkdir(parents=True, exist_ok=True)

app = FastAPI(title="Vocabulary Quiz API")
app.include_router(auth.router)
app.include_router(quizzes.router)
app.include_router(shares.router)
app.include_router(results.router)

# Synthesised audio, addressed as /media/<bucket>/<quiz>/<problem>_<ts>.mp3
app.mount(MEDIA_ROUTE, StaticFiles(directory=STORAGE_DIR), name="media")


@app.get("/info")
def root():
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key or settings.openrouter_api_key),
		"tts_configured": bool(settings.elevenlabs_api_key),
	}


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	try:
		ensure_schema()
	except Exception:
		logger.exception("Schema migration failed")
	logger.info("Vocabulary Quiz API started (storage at %s)", STORAGE_DIR)
