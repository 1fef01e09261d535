import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .db import Base, engine, ensure_schema
from .errors import ExamError
from .logging_setup import setup_console_logging
from .settings import settings
from .routers import exam_sets
from .routers import submission


logger = logging.getLogger(__name__)

app = FastAPI(title="IELTS Exam API")
app.include_router(exam_sets.router)
app.include_router(submission.router)


@app.exception_handler(ExamError)
async def exam_error_handler(request: Request, exc: ExamError):
	if exc.status_code >= 500:
		logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
	return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.get("/info")
def root():
	return {"status": "ok", "ai_configured": bool(settings.gemini_api_key or settings.openrouter_api_key)}


@app.on_event("startup")
async def startup_event():
	setup_console_logging(settings.log_level)
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	ensure_schema()
	logger.info("IELTS exam API started")
