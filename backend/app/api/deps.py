"""Shared FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, Request

from backend.app.container import ExportServices
from backend.app.services.export_service import ExportService


def get_services(request: Request) -> ExportServices:
    """Services built by the application lifespan."""
    return request.app.state.services


def get_export_service(services: Annotated[ExportServices, Depends(get_services)]) -> ExportService:
    return ExportService(services)


ExportServiceDep = Annotated[ExportService, Depends(get_export_service)]
