from __future__ import annotations

import logging
import os
from typing import Any, Dict

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from measurement_workflow.api_workflow import router as measurement_workflow_router
from measurement_workflow.config import WorkflowSettings

load_dotenv()

logging.basicConfig(
    level=os.environ.get("SKIQC_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ski QC – Measurement Workflow")
app.include_router(measurement_workflow_router)
logger.info("Measurement Workflow API loaded successfully")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/config")
def get_config() -> Dict[str, Any]:
    """Effective workflow configuration (environment + defaults)."""
    return WorkflowSettings.get_config().to_dict()
