import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from flames.errors import ContractViolationError, JobBusyError, NotFoundError, PreconditionError
from flames.google_helpers import DEFAULT_TEMPLATE

logger = logging.getLogger("flames_backend")

app = FastAPI(title="flames")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for dev
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class GenerateRequest(BaseModel):
    prompt: str
    template: Optional[str] = None


class ChatRequest(BaseModel):
    message: str
    jobId: str


@lru_cache(maxsize=1)
def get_backend():
    from flames.backend import build_backend
    return build_backend()


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, PreconditionError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, JobBusyError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ContractViolationError):
        return HTTPException(status_code=502, detail=str(e))
    logger.exception("Unhandled error in request")
    return HTTPException(status_code=500, detail=str(e))


@app.get("/", response_class=PlainTextResponse)
def root():
    return "flames backend is running."


@app.post("/api/v1/generate", status_code=202)
def generate(req: GenerateRequest, backend=Depends(get_backend)):
    if not req.prompt or not req.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt is required.")
    try:
        job_id = backend.create_job(req.prompt, req.template or DEFAULT_TEMPLATE)
    except Exception as e:
        raise _http_error(e)
    return {"jobId": job_id}


@app.get("/api/v1/job/{job_id}")
def get_job(job_id: str, backend=Depends(get_backend)):
    try:
        return backend.get_job(job_id)
    except Exception as e:
        raise _http_error(e)


@app.get("/api/v1/job/{job_id}/files")
def get_job_files(job_id: str, backend=Depends(get_backend)):
    try:
        return {"files": backend.list_files(job_id)}
    except Exception as e:
        raise _http_error(e)


@app.post("/api/v1/job/{job_id}/deploy", status_code=202)
def deploy_job(job_id: str, backend=Depends(get_backend)):
    try:
        backend.deploy(job_id)
    except Exception as e:
        raise _http_error(e)
    return {"message": "Deployment started."}


@app.post("/api/v1/job/{job_id}/retry", status_code=202)
def retry_job(job_id: str, backend=Depends(get_backend)):
    try:
        backend.retry_job(job_id)
    except Exception as e:
        raise _http_error(e)
    return {"jobId": job_id}


@app.post("/api/v1/job/{job_id}/embeddings")
def reindex_job(job_id: str, backend=Depends(get_backend)):
    try:
        return {"indexed": backend.reindex(job_id)}
    except Exception as e:
        raise _http_error(e)


@app.get("/api/v1/projects")
def list_projects(backend=Depends(get_backend)):
    try:
        return {"projects": backend.list_projects()}
    except Exception as e:
        raise _http_error(e)


@app.post("/api/v1/chat")
def chat(req: ChatRequest, backend=Depends(get_backend)):
    if not req.message or not req.message.strip():
        raise HTTPException(status_code=400, detail="Message is required.")
    try:
        return {"modifications": backend.chat(req.jobId, req.message)}
    except Exception as e:
        raise _http_error(e)


class DeployRequest(BaseModel):
    jobId: str


@app.post("/api/v1/deploy", status_code=202)
def deploy_project(req: DeployRequest, backend=Depends(get_backend)):
    return deploy_job(req.jobId, backend)


@app.post("/api/v1/webhook/cloudbuild", status_code=204)
async def cloudbuild_webhook(request: Request):
    body = await request.body()
    logger.info(f"[Webhook] Received Cloud Build notification ({len(body)} bytes)")
    return Response(status_code=204)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
