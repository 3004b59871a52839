"""Gather configuration - Tunables injected by the application.

Per KERNEL_PHILOSOPHY: This is library mechanism. The library reads no
environment variables or config files for these; apps construct a
GatherConfig (policy) and pass it to the gatherers.
"""

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field


class GatherConfig(BaseModel):
    """Gatherer tunables (immutable)."""

    model_config = ConfigDict(frozen=True)

    # Concurrent file copies during directory copies
    copy_concurrency: int = Field(default=10, ge=1)

    # HTTP downloads and registry requests
    http_timeout: float = Field(default=15.0, gt=0)
    user_agent: str = "amplifier-gather"

    # None: plain HTTP for loopback registries only
    oci_plain_http: bool | None = None

    # 0 means unlimited
    tar_files_limit: int = Field(default=0, ge=0)
    tar_file_size_limit: int = Field(default=0, ge=0)
