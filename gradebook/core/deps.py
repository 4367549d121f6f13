from fastapi import Request
from gradebook.core.context import StoreContext
from gradebook.services.gradebook_service import GradebookService

def get_context(request: Request) -> StoreContext:
    context = getattr(request.app.state, "store", None)
    if context is None:
        raise RuntimeError("StoreContext non inizializzato")
    return context

def get_gradebook(request: Request) -> GradebookService:
    return get_context(request).gradebook
