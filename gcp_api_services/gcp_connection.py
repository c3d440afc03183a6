"""Centralized GCP connection module.

Cached clients for Cloud Storage and the GenAI image model. Anything that
needs one of these clients should come through here instead of building
its own.
"""

import os
import threading
from google.cloud import storage
from google import genai


_DEFAULT_LOCATION = "us-central1"


def get_project_id() -> str:
    """Return the GCP project ID from env (empty lets the SDK infer it)."""
    return os.environ.get("GCP_PROJECT_ID", "")


def get_location() -> str:
    """Return the GCP region/location from env or default."""
    return os.environ.get("GCP_LOCATION", _DEFAULT_LOCATION)


def get_bucket_name() -> str:
    return os.environ.get("GCS_BUCKET", "family-art-app")


class _ClientCache:
    """Thread-safe lazy cache for GCP clients."""

    def __init__(self):
        self._lock = threading.Lock()
        self._storage_client: storage.Client | None = None
        self._genai_client: genai.Client | None = None

    def get_storage_client(self) -> storage.Client:
        if self._storage_client is None:
            with self._lock:
                if self._storage_client is None:
                    self._storage_client = storage.Client(
                        project=get_project_id() or None,
                    )
        return self._storage_client

    def get_genai_client(self) -> genai.Client:
        """GenAI client: API-key mode when GEMINI_API_KEY is set, else Vertex."""
        if self._genai_client is None:
            with self._lock:
                if self._genai_client is None:
                    api_key = os.environ.get("GEMINI_API_KEY", "")
                    if api_key:
                        self._genai_client = genai.Client(api_key=api_key)
                    else:
                        self._genai_client = genai.Client(
                            vertexai=True,
                            project=get_project_id() or None,
                            location=get_location(),
                        )
        return self._genai_client

    def reset(self) -> None:
        with self._lock:
            self._storage_client = None
            self._genai_client = None


_cache = _ClientCache()

get_storage_client = _cache.get_storage_client
get_genai_client = _cache.get_genai_client
reset_clients = _cache.reset
