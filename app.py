import secrets
import time
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from loguru import logger
from langgraph.graph import StateGraph, START, END

# Import our modules
from graph.state import ActionState
from graph.nodes.parse import parse
from graph.nodes.evaluate import evaluate
from graph.nodes.dispatch import make_dispatch
from tools.callback import CallbackDispatcher
from tools.errors import AuthError, ManifestLoadError
from tools.manifest import INSTALL_MANIFEST, SERVICE_DEFINITION, read_jsonc
from tools.settings import Settings

PICKLIST_CHOICES = [
    {"displayValue": {"en_US": "Text String"}, "submittedValue": "String"},
    {"displayValue": {"en_US": "Numeric Value"}, "submittedValue": "Number"},
]


def configure_logging(settings: Settings) -> None:
    """Add the rotating file sink next to loguru's default stderr sink."""
    if settings.log_file:
        logger.add(settings.log_file, rotation="1 day", retention="7 days", level=settings.log_level)


# Build the LangGraph workflow
def build_workflow(dispatcher: CallbackDispatcher):
    """Build the action processing workflow: parse -> evaluate -> dispatch."""
    workflow = StateGraph(ActionState)

    # Add nodes
    workflow.add_node("parse", parse)
    workflow.add_node("evaluate", evaluate)
    workflow.add_node("dispatch", make_dispatch(dispatcher))

    # Add edges
    workflow.add_edge(START, "parse")

    # An unparsable body ends the run; the caller already has its 201
    def branch_decision(state: ActionState) -> str:
        if state.get("decided_path") == "failed":
            logger.warning("Action request could not be parsed, no callback will be sent")
            return "abort"
        return "evaluate"

    workflow.add_conditional_edges(
        "parse",
        branch_decision,
        {
            "evaluate": "evaluate",
            "abort": END
        }
    )

    workflow.add_edge("evaluate", "dispatch")
    workflow.add_edge("dispatch", END)

    return workflow.compile()


def run_action(action_graph, body: bytes, headers: Dict[str, str]) -> Optional[Dict[str, Any]]:
    """
    Background continuation for /submitAsyncAction.

    Runs after the 201 response has been sent. It has no timeout and cannot
    be cancelled; every failure ends here and is only logged.
    """
    start_time = time.time()

    try:
        result = action_graph.invoke({
            "body": body,
            "headers": headers,
            "errors": []
        })
    except Exception as e:
        logger.exception(f"Processing Error: {e}")
        return None

    processing_time = time.time() - start_time
    logger.info(
        f"Action processing finished in {processing_time:.2f}s: "
        f"path={result.get('decided_path')} callback_status={result.get('callback_status')}"
    )
    return result


def base_url(request: Request) -> str:
    protocol = request.headers.get("x-forwarded-proto") or "https"
    return f"{protocol}://{request.headers.get('host', '')}"


def create_app(settings: Optional[Settings] = None, dispatcher: Optional[CallbackDispatcher] = None) -> FastAPI:
    """Create the HTTP application with its settings and callback dispatcher injected."""
    settings = settings or Settings.from_env()
    dispatcher = dispatcher or CallbackDispatcher(settings)
    action_graph = build_workflow(dispatcher)

    # Initialize FastAPI app
    app = FastAPI(
        title="Formula Flow Bridge",
        description="Evaluates spreadsheet formulas for marketing flow steps and reports results by callback",
        version="1.0.0"
    )
    app.state.settings = settings
    app.state.action_graph = action_graph

    def require_api_key(request: Request) -> None:
        """Reject POSTs whose x-api-key does not match the configured key."""
        if not settings.auth_enabled:
            return
        provided = request.headers.get("x-api-key") or ""
        if not secrets.compare_digest(provided.encode(), settings.api_key.encode()):
            logger.warning(f"Rejected {request.method} {request.url.path}: invalid or missing x-api-key")
            raise AuthError()

    @app.get("/status")
    def status():
        """Health check endpoint."""
        timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        return {"status": "OK", "timestamp": timestamp}

    @app.get("/install")
    def install(request: Request):
        """Install manifest with this instance injected as the OpenAPI server."""
        data = read_jsonc(settings.manifest_dir, INSTALL_MANIFEST)
        data["servers"] = [{"url": base_url(request)}]
        return data

    @app.get("/getServiceDefinition")
    def get_service_definition(request: Request):
        """Service definition pointing its endpoints at this instance."""
        data = read_jsonc(settings.manifest_dir, SERVICE_DEFINITION)
        url = base_url(request)
        data["invocationEndpoint"] = f"{url}/submitAsyncAction"
        data["statusEndpoint"] = f"{url}/status"
        return data

    @app.post("/getPicklist", dependencies=[Depends(require_api_key)])
    def get_picklist():
        """Output format choices offered in the flow step configuration."""
        return {"choices": PICKLIST_CHOICES}

    @app.post("/submitAsyncAction", status_code=201, dependencies=[Depends(require_api_key)])
    async def submit_async_action(request: Request, background_tasks: BackgroundTasks):
        """
        Accept a batch of lead records for formula evaluation.

        The body is only read here; parsing, evaluation and the callback run
        as a background task after the 201 has been returned.

        Expected payload:
        {
            "token": "...",
            "callbackUrl": "https://...",
            "context": {"subscription": {"munchkinId": "123-ABC-456"}},
            "objectData": [
                {
                    "objectContext": {"id": 1001},
                    "flowStepContext": {"formula": "=1+1", "format": "Number", "returnField": "score"}
                }
            ]
        }
        """
        body = await request.body()
        headers = dict(request.headers)
        logger.info(f"Received async action: {len(body)} bytes from {request.client.host if request.client else 'unknown'}")

        background_tasks.add_task(run_action, action_graph, body, headers)
        return {"status": "Accepted"}

    # Registered last: every other POST is authenticated before it is answered 404
    @app.post("/{path:path}", include_in_schema=False, dependencies=[Depends(require_api_key)])
    async def unknown_post(path: str):
        return Response(status_code=404)

    # Error handlers
    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        return JSONResponse(status_code=401, content={"error": str(exc)})

    @app.exception_handler(ManifestLoadError)
    async def manifest_error_handler(request: Request, exc: ManifestLoadError):
        return PlainTextResponse(str(exc), status_code=500)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        # Unknown routes and wrong methods both answer 404 with an empty body
        if exc.status_code in (404, 405):
            return Response(status_code=404)
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": "Internal server error"}
        )

    return app


settings = Settings.from_env()
configure_logging(settings)
app = create_app(settings)

if __name__ == "__main__":
    import uvicorn

    logger.info(f"Service active on port {settings.port}")

    uvicorn.run(
        "app:app",
        host=settings.host,
        port=settings.port,
        log_level="info"
    )
