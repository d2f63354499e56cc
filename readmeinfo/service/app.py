"""FastAPI application exposing README parsing over HTTP."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..errors import ReadmeInfoError
from ..models import ParseResult
from ..parser import ReadmeParser


class ParseRequest(BaseModel):
    content: str


class ParseFileRequest(BaseModel):
    path: str


class HealthResponse(BaseModel):
    status: str


def _default_parser() -> ReadmeParser:
    return ReadmeParser()


def create_app(
    parser_factory: Callable[[], ReadmeParser] = _default_parser,
) -> FastAPI:
    """Create the FastAPI application exposing readmeinfo operations."""
    app = FastAPI(title="readmeinfo", version="0.1.0")
    # One parser (and registry) per application, built on first use.
    holder: Dict[str, ReadmeParser] = {}

    async def get_parser() -> ReadmeParser:
        if "parser" not in holder:
            holder["parser"] = parser_factory()
        return holder["parser"]

    async def _in_executor(func: Callable[[], ParseResult]) -> ParseResult:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:  # pragma: no cover - fallback path when not in async context
            return func()
        return await loop.run_in_executor(None, func)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.post("/parse")
    async def parse_content(
        payload: ParseRequest,
        parser: ReadmeParser = Depends(get_parser),
    ) -> Dict[str, Any]:
        result = await _in_executor(lambda: parser.parse_content(payload.content))
        return result.to_dict()

    @app.post("/parse-file")
    async def parse_file(
        payload: ParseFileRequest,
        parser: ReadmeParser = Depends(get_parser),
    ) -> Dict[str, Any]:
        result = await _in_executor(lambda: parser.parse_file(payload.path))
        return result.to_dict()

    @app.exception_handler(ReadmeInfoError)
    async def readmeinfo_error_handler(_: Any, exc: ReadmeInfoError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(
        _: Any, exc: ValueError
    ) -> JSONResponse:  # pragma: no cover - simple mapping
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    return app


def run_service(
    host: str = "127.0.0.1",
    port: int = 8000,
    parser_factory: Callable[[], ReadmeParser] = _default_parser,
) -> None:  # pragma: no cover - integration path
    import uvicorn

    app = create_app(parser_factory)
    uvicorn.run(app, host=host, port=port)
