"""
app.schemas
~~~~~~~~~~~
Pydantic schemas and models for the API and the WebSocket protocol.
"""
from app.schemas.api_response import ApiResponse
from app.schemas.live_interactions import (
    CommentData,
    CommentHistoryData,
    EndLiveRequest,
    EndLiveResponseData,
    LiveEvent,
    RtcTokenData,
    SessionInfoData,
    StartLiveRequest,
    StartLiveResponseData,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()

__all__ = [
    "ApiResponse",
    "CommentData",
    "CommentHistoryData",
    "EndLiveRequest",
    "EndLiveResponseData",
    "LiveEvent",
    "RtcTokenData",
    "SessionInfoData",
    "StartLiveRequest",
    "StartLiveResponseData",
]
