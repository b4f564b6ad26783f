"""FastAPI application that serves generated artifacts locally."""

from __future__ import annotations

from pathlib import Path
from typing import List

from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from .. import __version__

ROOT_FILES = ("llms.txt", "llms-api.txt", "llms-full.txt")
DEFAULT_PORT = 4321


class HealthResponse(BaseModel):
    status: str
    directory: str


class ArtifactEntry(BaseModel):
    path: str
    size: int


class ArtifactIndex(BaseModel):
    artifacts: List[ArtifactEntry]


def create_app(directory: Path | str) -> FastAPI:
    """Create an app serving ``directory`` with llms*.txt files at the root."""
    root = Path(directory).expanduser().resolve()
    if not root.is_dir():
        raise FileNotFoundError(f"directory {root} does not exist (run `skillc generate` first)")

    app = FastAPI(title="skillc artifacts", version=__version__)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", directory=str(root))

    @app.get("/_artifacts", response_model=ArtifactIndex)
    async def list_artifacts() -> ArtifactIndex:
        entries = [
            ArtifactEntry(path=path.relative_to(root).as_posix(), size=path.stat().st_size)
            for path in sorted(root.rglob("*"))
            if path.is_file()
        ]
        return ArtifactIndex(artifacts=entries)

    def _root_file_route(filename: str) -> None:
        async def serve_root_file() -> FileResponse:
            target = root / filename
            if not target.is_file():
                raise HTTPException(status_code=404, detail=f"{filename} has not been generated")
            return FileResponse(target, media_type="text/plain; charset=utf-8")

        app.add_api_route(f"/{filename}", serve_root_file, methods=["GET"], name=filename)

    for filename in ROOT_FILES:
        _root_file_route(filename)

    app.mount("/", StaticFiles(directory=str(root), html=True), name="artifacts")
    return app


def run_service(directory: Path | str, host: str = "localhost", port: int = DEFAULT_PORT) -> None:  # pragma: no cover - integration path
    import uvicorn

    app = create_app(directory)
    uvicorn.run(app, host=host, port=port)


__all__ = ["ArtifactIndex", "DEFAULT_PORT", "ROOT_FILES", "create_app", "run_service"]
