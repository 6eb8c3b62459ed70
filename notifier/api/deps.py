"""Shared API dependencies"""

from fastapi import Request

from notifier.services.factory import NotifierServices

def get_services(request: Request) -> NotifierServices:
    """Services built during application startup"""
    return request.app.state.services
