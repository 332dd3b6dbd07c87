"""
Shared dependencies across the application.

Services are built once in the application lifespan and kept on
``app.state``; these functions hand them to the routers.
"""

from fastapi import Request


def get_user_store(request: Request):
    return request.app.state.user_store


def get_scheduler(request: Request):
    return request.app.state.scheduler


def get_medication_service(request: Request):
    return request.app.state.medication_service


def get_chat_service(request: Request):
    return request.app.state.chat_service
