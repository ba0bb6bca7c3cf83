"""
Main API router.
"""

from fastapi import APIRouter
from tally.api import recurrences, installments, transactions

api_router = APIRouter()

api_router.include_router(recurrences.router)
api_router.include_router(installments.router)
api_router.include_router(transactions.router)
