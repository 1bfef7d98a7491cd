from fastapi import Request

from app.services.live_system import LiveSystem


def get_live_system(request: Request) -> LiveSystem:
    return request.app.state.live_system
