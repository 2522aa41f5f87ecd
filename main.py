#!/usr/bin/env python3
"""
Face-Scan Vitals Session Service — Main Entry Point
=====================================================
Launches the FastAPI backend with Uvicorn.
Run with:  python main.py          (SIMULATION_MODE=1 to run without a camera)

⚠️  DISCLAIMER: This is a WELLNESS ESTIMATION tool, NOT a medical device.
    Vitals come from an external rPPG service and the interpretation from a
    general-purpose AI model.  Do NOT use them for diagnosis or treatment.
"""

import uvicorn

from api.app import create_app
from config import API_HOST, API_PORT, LOG_LEVEL

if __name__ == "__main__":
    app = create_app()
    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        reload=False,
        log_level=LOG_LEVEL.lower(),
    )
