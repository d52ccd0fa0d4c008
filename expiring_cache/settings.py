import threading

from pydantic import BaseModel, Field


class CacheSettings(BaseModel):
    """Validated configuration of one `ExpiringCache`.

    Notes
    -----
    - Values here are not read from environment variables. `ExpiringCache` builds
      its `CacheSettings` from its constructor arguments.
    - `ttl_seconds` is both the time-to-live of every entry and the period of the
      background sweep. It must be finite, positive and no longer than the longest
      wait the platform's thread primitives accept.
    - An out-of-range TTL raises `pydantic.ValidationError`.
    """

    ttl_seconds: float = Field(gt=0, le=threading.TIMEOUT_MAX, allow_inf_nan=False)
    # Sweep jobs are registered as "<prefix>-<cache name>"
    job_id_prefix: str = "expiring-cache"
