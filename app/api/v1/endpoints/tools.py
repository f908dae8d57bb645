import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.api.v1.deps import get_query_service
from app.services.query_service import QueryService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/tools/run-sql")
async def run_sql(request: Request, query_service: QueryService = Depends(get_query_service)):
    """
    Executes a SELECT-only SQL query with guardrails.
    The body is decoded by hand so malformed JSON is reported in the same error shape.
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("run-sql received invalid JSON: %s", e)
        return JSONResponse(
            {"success": False, "error": "Invalid JSON in request body", "details": str(e)},
            status_code=400,
        )

    outcome = await query_service.run(body)
    return JSONResponse(outcome.payload, status_code=outcome.status_code)


@router.api_route("/tools/run-sql", methods=["GET", "PUT", "DELETE", "PATCH"])
async def run_sql_method_not_allowed():
    return JSONResponse(
        {
            "success": False,
            "error": "Method not allowed",
            "details": "This endpoint only accepts POST requests",
        },
        status_code=405,
    )
