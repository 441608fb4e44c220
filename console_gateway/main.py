import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from console_gateway.api import router, status_code_for
from console_gateway.config import get_settings
from console_gateway.errors import ConfigurationError, GatewayError
from console_gateway.logging_config import configure_logging


logger = logging.getLogger(__name__)


app = FastAPI(title="Proxmox Console Gateway")
app.include_router(router)


@app.exception_handler(GatewayError)
async def gateway_error_handler(_request: Request, exc: GatewayError) -> JSONResponse:
    return JSONResponse(status_code=status_code_for(exc), content=exc.to_payload())


@app.on_event("startup")
def startup() -> None:
    try:
        settings = get_settings()
        settings.validate_runtime()
    except ConfigurationError as exc:
        # Upstream calls stay blocked until the configuration is fixed.
        configure_logging(debug=False)
        for error in exc.errors:
            logger.error("invalid configuration: %s", error)
        return
    configure_logging(settings.debug_logging)
    logger.info(
        "console-gateway startup complete upstream=%s verify_tls=%s",
        settings.proxmox_host,
        settings.verify_tls,
    )
