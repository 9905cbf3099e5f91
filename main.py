from fastapi import FastAPI, Request, Depends
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Optional
import uvicorn
import logging

from config import Settings
from services.gemini_client import GeminiClient
from services.proxy_service import ProxyService, ProxyResponse

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
}

METHOD_NOT_ALLOWED = {"message": "Method Not Allowed"}


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def get_proxy_service(request: Request) -> ProxyService:
    return request.app.state.proxy_service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _json(result: ProxyResponse) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.body)


def create_app(settings: Settings, client: Optional[GeminiClient] = None, proxy_service: Optional[ProxyService] = None) -> FastAPI:
    """Build the proxy app; settings are read once by the caller and injected here"""
    app = FastAPI(title="Try-on image proxy")
    app.state.settings = settings
    app.state.proxy_service = proxy_service or ProxyService(settings, client=client)

    if not settings.api_key_configured:
        logger.warning("GEMINI_API_KEY not configured. Proxy endpoints will return configuration errors.")

    @app.middleware("http")
    async def add_cors_headers(request: Request, call_next):
        response = await call_next(request)
        if request.app.state.settings.cors_enabled:
            response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 405:
            return JSONResponse(status_code=405, content=METHOD_NOT_ALLOWED, headers=exc.headers)
        return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail)}, headers=exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.url.path}: {str(exc)}")
        # built by the outermost error middleware, so add_cors_headers never sees it
        return JSONResponse(
            status_code=500,
            content={"message": "Internal server error while processing the request.", "error": str(exc)},
            headers=CORS_HEADERS if request.app.state.settings.cors_enabled else None,
        )

    async def preflight(settings: Settings = Depends(get_settings)):
        """Bare 200 for CORS pre-flight; without CORS, OPTIONS is just another wrong verb"""
        if not settings.cors_enabled:
            return JSONResponse(status_code=405, content=METHOD_NOT_ALLOWED, headers={"Allow": "POST"})
        return Response(status_code=200)

    app.add_api_route("/api/generate-image", preflight, methods=["OPTIONS"])
    app.add_api_route("/api/get-suggestion", preflight, methods=["OPTIONS"])

    @app.post("/api/generate-image")
    async def generate_image(request: Request, service: ProxyService = Depends(get_proxy_service)):
        """Virtual try-on: person image + item image -> generated base64 image"""
        logger.info("GENERATE IMAGE ENDPOINT HIT")
        return _json(await service.generate_image(await request.body()))

    @app.post("/api/get-suggestion")
    async def get_suggestion(request: Request, service: ProxyService = Depends(get_proxy_service)):
        """Short style/scene prompt suggestion"""
        logger.info("SUGGESTION ENDPOINT HIT")
        return _json(await service.get_suggestion(await request.body()))

    @app.get("/health")
    async def health(settings: Settings = Depends(get_settings)):
        return {"status": "ok", "api_key_configured": settings.api_key_configured}

    return app


def build_app() -> FastAPI:
    """Entry point for `uvicorn --factory main:build_app`"""
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    return create_app(settings)


if __name__ == "__main__":
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
