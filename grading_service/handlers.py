import logging

from pydantic import ValidationError as PayloadError

from grading_service.errors import GradingError
from grading_service.grading import GradingService
from grading_service.schemas import GradeRequest

logger = logging.getLogger("handlers")


def success(data) -> dict:
    return {"success": True, "data": data}


def failure(error_type: str, message: str) -> dict:
    return {"success": False, "error": {"type": error_type, "message": message}}


class GradingHandlers:
    """NATS request handlers; each returns a JSON-able response envelope."""

    def __init__(self, service: GradingService):
        self.service = service

    def subscriptions(self) -> dict:
        return {
            "programming.run": self.handle_run_code,
            "programming.submit": self.handle_submit_code,
            "programming.submissions": self.handle_get_submissions,
            "programming.submission.get": self.handle_get_submission,
        }

    async def handle_run_code(self, data: dict) -> dict:
        return await self._grade(data, submit=False)

    async def handle_submit_code(self, data: dict) -> dict:
        return await self._grade(data, submit=True)

    async def _grade(self, data: dict, submit: bool) -> dict:
        operation = "submit" if submit else "run"
        logger.info(f"Received {operation} request. Keys: {list(data.keys())}")

        try:
            exercise_id = data.get("exercise_id")
            if exercise_id is None:
                return failure("validation_error", "Missing exercise_id")
            request = GradeRequest(**data)

            grade = self.service.submit_code if submit else self.service.run_code
            result = await grade(
                exercise_id=int(exercise_id),
                code=request.code,
                language=request.language,
                user_id=request.user_id,
                user_role=request.user_role.value,
            )
            return success(result.model_dump(mode='json', exclude_none=True))

        except PayloadError as e:
            return failure("validation_error", f"Invalid request: {e.errors()[0]['msg']}")
        except (TypeError, ValueError) as e:
            return failure("validation_error", str(e))
        except GradingError as e:
            logger.info(f"{operation} rejected: {e.message}")
            return failure(e.error_type, e.message)
        except Exception as e:
            logger.exception(f"CRITICAL error handling {operation} request")
            return failure("internal_error", f"Internal error: {e}")

    async def handle_get_submissions(self, data: dict) -> dict:
        try:
            exercise_id = data.get("exercise_id")
            student_id = data.get("student_id")
            if exercise_id is None or student_id is None:
                return failure("validation_error", "Missing exercise_id or student_id")

            submissions = self.service.get_submissions(int(exercise_id), int(student_id), data.get("limit"))
            return success([s.model_dump(mode='json') for s in submissions])

        except (TypeError, ValueError) as e:
            return failure("validation_error", str(e))
        except Exception as e:
            logger.exception("Error getting submissions")
            return failure("internal_error", str(e))

    async def handle_get_submission(self, data: dict) -> dict:
        try:
            submission_id = data.get("id")
            if submission_id is None:
                return failure("validation_error", "Missing submission id")

            submission = self.service.get_submission(int(submission_id))
            return success(submission.model_dump(mode='json'))

        except GradingError as e:
            return failure(e.error_type, e.message)
        except Exception as e:
            logger.exception("Error getting submission")
            return failure("internal_error", str(e))
