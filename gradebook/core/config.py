import os
from typing import Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    env: str = os.getenv("ENV", "unit-test")
    database_url: str = "sqlite+aiosqlite:///./gradebook.db"
    database_echo: bool = False
    # se assente si usa il feed in-process
    rabbitmq_url: Optional[str] = None
    change_exchange: str = "gradebook.changes"
    max_batch_size: int = 500
    subscription_poll_interval: Optional[float] = None

    class Config:
        env_file = None
        env_prefix = "GRADEBOOK_"
