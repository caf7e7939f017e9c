from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.config import settings
from app.core.database import init_db, AsyncSessionLocal
from app.core.errors import register_exception_handlers
from app.core.logs import setup_logging
from app.core.seed import seed_data
from app.api.router import api_router

setup_logging(settings.LOG_LEVEL)

tags_metadata = [
    {
        "name": "Categorization",
        "description": "Rule-based and fuzzy category suggestions, learning from corrections.",
    },
    {
        "name": "Category Rules",
        "description": "Pattern rules used by the categorizer.",
    },
    {
        "name": "Recurring",
        "description": "Subscriptions and regular payments inferred from history.",
    },
    {
        "name": "Anomalies",
        "description": "Outliers, new large merchants, duplicates and category spikes.",
    },
    {
        "name": "System",
        "description": "Service endpoints.",
    },
]

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="""
### Transaction Intelligence

Categorization, recurring-payment detection and anomaly detection over a
personal transaction ledger.

    """,
    version=settings.VERSION,
    openapi_tags=tags_metadata,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.on_event("startup")
async def startup():
    await init_db()
    async with AsyncSessionLocal() as session:
        await seed_data(session)

app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/health", tags=["System"])
def health():
    return {
        "status": "operational",
        "version": settings.VERSION,
        "reference_date": settings.REFERENCE_DATE,
    }
