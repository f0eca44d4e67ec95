"""Suggestion review API module.

Lets reviewers browse pending suggestions and accept or dismiss them.

Submodules:
    - router: FastAPI router for /suggestions/* endpoints
    - models: Pydantic request/response models
"""

from src.api.suggestions.router import router

__all__ = ["router"]
