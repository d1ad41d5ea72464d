import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from naisd.config import Settings
from naisd.deployer import Deployer
from naisd.deploystatus import DeploymentStatusViewer
from naisd.errors import DeployError, ReconcileError
from naisd.httpclient import new_session
from naisd.kub import KubernetesClient
from naisd.manifest import ManifestSource
from naisd.metrics import REQUEST_COUNT, REQUEST_ERROR_COUNT, REQUEST_LATENCY
from naisd.model import DeploymentRequest
from naisd.registry import RegistryClient


def create_app(deployer: Deployer, status_viewer: DeploymentStatusViewer) -> FastAPI:
    app = FastAPI(title="naisd")

    @app.middleware("http")
    async def add_metrics(request: Request, call_next):
        REQUEST_COUNT.inc()

        start_time = time.time()
        response = await call_next(request)
        REQUEST_LATENCY.observe(time.time() - start_time)

        if response.status_code >= 400:
            REQUEST_ERROR_COUNT.inc()

        return response

    @app.exception_handler(RequestValidationError)
    async def bad_request(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"message": f"unable to parse request: {exc}"})

    @app.get("/isalive")
    def isalive():
        return {"message": "alive"}

    @app.get("/metrics")
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/deploy")
    def deploy(deployment_request: DeploymentRequest):
        try:
            result = deployer.deploy(deployment_request)
            return {"result": result.lines()}
        except ReconcileError as e:
            logging.error(f"deploy of {deployment_request.application} failed: {e}")
            return JSONResponse(status_code=e.status_code,
                                content={"message": str(e), "applied": e.result.lines()})
        except DeployError as e:
            logging.error(f"deploy of {deployment_request.application} failed: {e}")
            return JSONResponse(status_code=e.status_code, content={"message": str(e), "applied": []})

    @app.get("/deploystatus/{namespace}/{deploy_name}")
    def deploy_status(namespace: str, deploy_name: str):
        try:
            found = status_viewer.status_view(namespace, deploy_name)
        except DeployError as e:
            return JSONResponse(status_code=e.status_code, content={"message": str(e)})

        if found is None:
            return JSONResponse(status_code=404, content={
                "message": f"did not find deployment: {deploy_name} namespace: {namespace}"})

        status, view = found
        return JSONResponse(status_code=status.http_status, content=view.model_dump(mode="json"))

    return app


def build_app(settings: Settings) -> FastAPI:
    cluster = KubernetesClient.from_settings(settings)

    def registry_factory(request: DeploymentRequest) -> RegistryClient:
        return RegistryClient(settings.registry_url, new_session(settings), settings.http_timeout,
                              request.registry_username, request.registry_password)

    deployer = Deployer(settings, cluster, ManifestSource(settings), registry_factory)
    return create_app(deployer, DeploymentStatusViewer(cluster))


def run():
    import uvicorn

    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(build_app(settings), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
