"""
HTTP surface for expansion and containment.

Endpoints:
- GET /ValueSet                  - List registered ValueSets
- GET /ValueSet/$expand          - Expanded ValueSet document
- GET /ValueSet/$validate-code   - Membership of one (system, code)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .context import TerminologyContext
from .exceptions import (
    FilterOperationUnsupported,
    ImportCycleDetected,
    TerminologyError,
    UnknownCodeSystem,
    UnknownValueSet,
)
from .models import Code

logger = logging.getLogger(__name__)

router = APIRouter()


class ValueSetSummary(BaseModel):
    url: str
    name: Optional[str] = None
    binding_strength: Optional[str] = None
    expanded: bool


class ValueSetListResponse(BaseModel):
    total: int
    value_sets: list[ValueSetSummary]


class ValidateCodeResponse(BaseModel):
    """Response model for $validate-code."""
    result: bool
    url: str
    system: str
    code: str


def get_context(request: Request) -> TerminologyContext:
    return request.app.state.terminology


@router.get("/ValueSet", response_model=ValueSetListResponse)
def list_value_sets(context: TerminologyContext = Depends(get_context)):
    """List every registered ValueSet."""
    summaries = [
        ValueSetSummary(
            url=vs.url,
            name=vs.document.name,
            binding_strength=vs.binding_strength,
            expanded=vs.is_expanded,
        )
        for vs in context.repository.all()
    ]
    return ValueSetListResponse(total=len(summaries), value_sets=summaries)


@router.get("/ValueSet/$expand")
def expand_value_set(
    url: str = Query(..., description="Canonical URL of the ValueSet"),
    context: TerminologyContext = Depends(get_context),
):
    """Expand a ValueSet and return it with a populated expansion."""
    return context.expansion_document(url)


@router.get("/ValueSet/$validate-code", response_model=ValidateCodeResponse)
def validate_code(
    url: str = Query(..., description="Canonical URL of the ValueSet"),
    system: str = Query(...),
    code: str = Query(...),
    context: TerminologyContext = Depends(get_context),
):
    """Check whether (system, code) is in the ValueSet."""
    result = context.contains(url, Code(system, code))
    return ValidateCodeResponse(result=result, url=url, system=system, code=code)


def _error_response(status_code: int, exc: TerminologyError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc), **exc.details},
    )


def create_app(context: Optional[TerminologyContext] = None, lifespan=None) -> FastAPI:
    """
    Build the FastAPI app.

    Pass a ready context directly, or a lifespan that stores one on
    app.state.terminology at startup.
    """
    app = FastAPI(
        title="ValueSet Engine",
        description="ValueSet expansion and containment",
        version="0.1.0",
        lifespan=lifespan,
    )
    if context is not None:
        app.state.terminology = context
    app.include_router(router)

    @app.exception_handler(UnknownValueSet)
    async def unknown_value_set_handler(request: Request, exc: UnknownValueSet):
        return _error_response(404, exc)

    @app.exception_handler(UnknownCodeSystem)
    async def unknown_code_system_handler(request: Request, exc: UnknownCodeSystem):
        return _error_response(404, exc)

    @app.exception_handler(FilterOperationUnsupported)
    async def filter_operation_handler(request: Request, exc: FilterOperationUnsupported):
        return _error_response(422, exc)

    @app.exception_handler(ImportCycleDetected)
    async def import_cycle_handler(request: Request, exc: ImportCycleDetected):
        return _error_response(422, exc)

    return app
