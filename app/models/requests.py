# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# JSON bodies accepted by the API. Invalid bodies are rejected by FastAPI
# with a 422 before a handler runs.
#
# Document uploads are multipart (file + `type` form field) and are checked
# in the route handler, so only the chat body needs a model here.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """Request body for POST /chat: one fan message, no history."""

    message: str = Field(
        min_length=1,
        max_length=2000,
        description="The fan's message to the assistant",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"message": "When is the next match?"},
                {"message": "Who is on the CS2 roster?"},
            ]
        }
    )
