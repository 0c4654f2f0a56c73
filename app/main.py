from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from app.logging_config import configure_logging
from app.routers import orders

configure_logging()

app = FastAPI(title='Order Fulfillment Console')

app.include_router(orders.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
