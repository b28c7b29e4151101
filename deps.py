from typing import Optional

from fastapi import Request

from config import Settings
from payments import StripeGateway
from storage import Storage


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_gateway(request: Request) -> Optional[StripeGateway]:
    return request.app.state.gateway
