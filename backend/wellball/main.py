from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse

from wellball.auto.routes import router as auto_router
from wellball.errors import WellballError
from wellball.logger import setup_logger
from wellball.scoring.routes import router as scoring_router
from wellball.tracking.routes import router as tracking_router

logger = setup_logger(__name__)

app = FastAPI(title="Wellball")
app.include_router(scoring_router)
app.include_router(tracking_router)
app.include_router(auto_router)


@app.exception_handler(WellballError)
async def wellball_error_handler(request: Request, exc: WellballError) -> JSONResponse:
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.user_message, "code": exc.code})


@app.get("/", include_in_schema=False)
def root(request: Request):
    # Browsers go to Swagger UI; API clients get a JSON index.
    accept = (request.headers.get("accept") or "").lower()
    if "text/html" in accept:
        return RedirectResponse(url="/docs")
    return {
        "name": "Wellball",
        "docs": "/docs",
        "health": "/health",
        "endpoints": [
            "POST /games",
            "GET /games/{game_id}",
            "POST /games/{game_id}/shots",
            "DELETE /games/{game_id}/shots/{log_id}",
            "POST /games/{game_id}/advance",
            "POST /games/{game_id}/clock/start",
            "POST /games/{game_id}/bonus/start",
            "POST /games/{game_id}/trackers/claim",
            "PUT /games/{game_id}/auto-mode",
            "POST /games/{game_id}/auto-events",
            "GET /games/{game_id}/review",
        ],
    }


@app.get("/health")
def health():
    return {"status": "ok"}
