"""
AWS Lambda handler — Mangum wrapper for the ExamGuard FastAPI app.

Lifespan is enabled so each cold start brings up the violation consumer
and the trend scheduler.
"""

from mangum import Mangum

from app.main import app

handler = Mangum(app, lifespan="auto")
