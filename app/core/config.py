from pydantic_settings import BaseSettings
from dotenv import load_dotenv
from pathlib import Path
import os


load_dotenv()


class Settings(BaseSettings):
    app_name: str = "Norruva DPP API"
    debug: bool = False
    database_url: str = ""
    host: str = "127.0.0.1"
    port: int = 8000
    secret_key: str = ""
    access_token_expire_minutes: int = 15
    refresh_token_expire_minutes: int = 60 * 60 * 24 * 7
    bcrypt_rounds: int = 12
    allowed_hosts: str = ""
    static_dir: Path = Path(__file__).parent.parent.parent / "static"
    public_url: str = "http://localhost:8000"
    log_file: str = "logs/application.log"
    log_level: str = "INFO"

    # Webhooks
    webhook_secret: str = "mock-secret-for-development"
    webhook_timeout_seconds: float = 10.0

    # Credential / proof / anchoring collaborator
    oracle_url: str = ""
    oracle_timeout_seconds: float = 30.0
    anchor_max_attempts: int = 3
    anchor_backoff_seconds: float = 2.0
    anchor_backoff_max_seconds: float = 60.0

    # Workflow
    recycling_credit_amount: int = 10
    enforce_submission_checklist: bool = False


settings = Settings()

if not settings.secret_key:
    raise RuntimeError("Secret key not configured.")


os.makedirs(settings.static_dir, exist_ok=True)
