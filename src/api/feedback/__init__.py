"""Raw feedback item API module.

Submodules:
    - router: FastAPI router for /feedback/items/* endpoints
    - models: Pydantic request/response models
"""

from src.api.feedback.router import router

__all__ = ["router"]
