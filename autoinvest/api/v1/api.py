"""
V1 API router aggregation, mounted by ``main.py`` at ``/api/v1``.
"""

from fastapi import APIRouter

from autoinvest.api.v1.endpoints import drip, executions, plans

api_router = APIRouter()

api_router.include_router(plans.router, prefix="/auto-invest", tags=["Auto-Invest"])

# Execution routes live under both /auto-invest/plans/{id}/executions and
# /auto-invest/executions, so they share the plans prefix.
api_router.include_router(executions.router, prefix="/auto-invest", tags=["Executions"])

api_router.include_router(drip.router, prefix="/drip", tags=["DRIP"])
