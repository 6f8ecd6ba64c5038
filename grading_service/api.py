import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from grading_service.errors import GradingError
from grading_service.grading import GradingService
from grading_service.handlers import failure, success
from grading_service.schemas import GradeRequest

logger = logging.getLogger("api")

router = APIRouter()


def get_grading_service(request: Request) -> GradingService:
    return request.app.state.grading_service


@router.post("/exercises/{exercise_id}/run")
async def run_code(
    exercise_id: int,
    body: GradeRequest,
    service: GradingService = Depends(get_grading_service),
):
    result = await service.run_code(exercise_id, body.code, body.language, body.user_id, body.user_role.value)
    return success(result.model_dump(mode='json', exclude_none=True))


@router.post("/exercises/{exercise_id}/submit", status_code=201)
async def submit_code(
    exercise_id: int,
    body: GradeRequest,
    service: GradingService = Depends(get_grading_service),
):
    result = await service.submit_code(exercise_id, body.code, body.language, body.user_id, body.user_role.value)
    return success(result.model_dump(mode='json', exclude_none=True))


@router.get("/exercises/{exercise_id}/submissions")
async def get_submissions(
    exercise_id: int,
    student_id: int,
    limit: Optional[int] = None,
    service: GradingService = Depends(get_grading_service),
):
    submissions = service.get_submissions(exercise_id, student_id, limit)
    return success([s.model_dump(mode='json') for s in submissions])


@router.get("/submissions/{submission_id}")
async def get_submission(
    submission_id: int,
    service: GradingService = Depends(get_grading_service),
):
    submission = service.get_submission(submission_id)
    return success(submission.model_dump(mode='json'))


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "invalid value")
        if field:
            message = f"{field}: {message}"
        return JSONResponse(status_code=400, content=failure("validation_error", f"Invalid request: {message}"))

    @app.exception_handler(GradingError)
    async def grading_error_handler(request: Request, exc: GradingError):
        return JSONResponse(status_code=exc.status_code, content=failure(exc.error_type, exc.message))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content=failure("internal_error", "Internal server error"))
