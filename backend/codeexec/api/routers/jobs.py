from fastapi import APIRouter, Depends, status
from codeexec.api.deps import get_current_principal, get_orchestrator
from codeexec.models.results import ExecutionResult
from codeexec.schemas.job import CancelOut, ExecuteIn, JobCreate, JobCreated, JobOut
from codeexec.services.orchestrator import Orchestrator
from codeexec.services.runtimes import supported_languages

router = APIRouter(tags=["jobs"])


@router.get("/languages", response_model=list[str])
async def list_languages():
    return supported_languages()


@router.post("/jobs", response_model=JobCreated, status_code=status.HTTP_202_ACCEPTED)
async def submit_job(
    payload: JobCreate,
    principal: str = Depends(get_current_principal),
    orc: Orchestrator = Depends(get_orchestrator),
):
    job_id = await orc.submit(
        principal, payload.language, payload.source_files, payload.options
    )
    return JobCreated(job_id=job_id)


@router.get("/jobs/{job_id}", response_model=JobOut)
async def get_job(
    job_id: str,
    principal: str = Depends(get_current_principal),
    orc: Orchestrator = Depends(get_orchestrator),
):
    job = await orc.get_status(principal, job_id)
    return JobOut.from_job(job)


@router.post("/jobs/{job_id}/execute", response_model=ExecutionResult)
async def execute_job(
    job_id: str,
    payload: ExecuteIn,
    principal: str = Depends(get_current_principal),
    orc: Orchestrator = Depends(get_orchestrator),
):
    return await orc.execute(principal, job_id, payload.stdin)


@router.post("/jobs/{job_id}/cancel", response_model=CancelOut)
async def cancel_job(
    job_id: str,
    principal: str = Depends(get_current_principal),
    orc: Orchestrator = Depends(get_orchestrator),
):
    return CancelOut(cancelled=await orc.cancel(principal, job_id))
