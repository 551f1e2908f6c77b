# app/dependencies.py
"""
Request-scoped access to the shared services created at startup.

The store, reconciler and Stripe gateway live on app.state and are
handed to routes through FastAPI dependencies.
"""

from fastapi import Request

from app.config import AppConfig
from billing.reconciler import EntitlementReconciler
from persistence.entitlements import EntitlementStore


def get_config(request: Request) -> AppConfig:
    return request.app.state.config


def get_store(request: Request) -> EntitlementStore:
    return request.app.state.store


def get_processor(request: Request):
    return request.app.state.processor


def get_reconciler(request: Request) -> EntitlementReconciler:
    return request.app.state.reconciler
