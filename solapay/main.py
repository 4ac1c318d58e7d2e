import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from solapay.database import Base, engine
from solapay.exceptions import PaymentError
from solapay.logging_setup import configure_logging
from solapay.routes import router

configure_logging("solapay")
logger = logging.getLogger(__name__)

app = FastAPI(title="SolaPay Checkout Service")

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
