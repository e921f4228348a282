from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from audits.checks import CATALOGUE
from audits.scoring import CATEGORY_WEIGHTS

from .routes import audits, logs
from .schemas.audits import CheckCatalogueResponse, CheckDefinitionResponse


description = """
Product Page Intelligence audit API.

Every audit run goes through the same pipeline:
1. **fetch** the product page markup.
2. **check** it against the fixed rule catalogue.
3. **score** the results per category and overall.

Batches fan runs out to background workers; poll the batch endpoint for progress.
"""

app = FastAPI(
    title="Product Page Intelligence API",
    description=description,
    version="0.1.0",
    openapi_tags=[
        {"name": "audits", "description": "Batch and single-page audits"},
        {"name": "logs", "description": "Audit run logs"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(audits.router)
app.include_router(logs.router)
app.mount("/metrics", make_asgi_app())


@app.get("/health", tags=["meta"])
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/checks", response_model=CheckCatalogueResponse, tags=["meta"])
def check_catalogue() -> CheckCatalogueResponse:
    return CheckCatalogueResponse(
        checks=[
            CheckDefinitionResponse(
                id=definition.id,
                category=definition.category.value,
                name=definition.name,
                severity=definition.severity.value,
                weight=definition.weight,
            )
            for definition in CATALOGUE
        ],
        category_weights={category.value: weight for category, weight in CATEGORY_WEIGHTS.items()},
    )
