from fastapi import FastAPI
from prometheus_client import Counter, generate_latest
from starlette.responses import Response

from api.routes.cron import router as cron_router

app = FastAPI(title="cronsync")
app.include_router(cron_router)

requests_total = Counter(
    "cronsync_api_requests_total",
    "Total API requests"
)


@app.middleware("http")
async def count_requests(request, call_next):
    requests_total.inc()
    return await call_next(request)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type="text/plain")
