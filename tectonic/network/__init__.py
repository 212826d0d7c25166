"""Network module for the Tectonic client."""

from .client import PendingRequest, RequestState, TectonicClient

__all__ = ["PendingRequest", "RequestState", "TectonicClient"]
