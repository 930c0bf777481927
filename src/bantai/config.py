"""Engine-wide configuration."""

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class BantaiSettings(BaseSettings):
    """Defaults applied when policies, rules and audit events are built."""
    
    model_config = ConfigDict(
        env_prefix="BANTAI_",
        env_file=".env",
        extra="ignore",  # Ignore unrelated keys from .env
    )
    
    # Policy evaluation
    default_strategy: str = "preemptive"
    
    # Versioning stamped on rules, policies and audit events
    default_version: str = "v1"
    audit_version: str = "1"
    
    # In-memory storage drops expired keys when they are read
    memory_storage_sweep: bool = True


settings = BantaiSettings()
