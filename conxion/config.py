import os
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


class Settings:
    # -------------------------------------------------------
    # Project
    # -------------------------------------------------------
    PROJECT_NAME: str = "ConXion API"
    ENV: str = os.getenv("ENV", "dev")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Comma separated; "*" during development
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    # -------------------------------------------------------
    # Supabase
    # -------------------------------------------------------
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")

    # Public key, used for calls made on behalf of the caller
    SUPABASE_ANON_KEY: str = os.getenv("SUPABASE_ANON_KEY", "")

    # Server only. Never returned to clients.
    SUPABASE_SERVICE_ROLE_KEY: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

    # When set, bearer tokens are verified locally instead of via auth.get_user
    SUPABASE_JWT_SECRET: str = os.getenv("SUPABASE_JWT_SECRET", "")
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: str = "authenticated"

    # -------------------------------------------------------
    # Local database (onboarding drafts)
    # -------------------------------------------------------
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "sqlite:///./conxion.db"
    )

    # Render uses postgres:// but SQLAlchemy needs postgresql://
    if DATABASE_URL.startswith("postgres://"):
        DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

    # -------------------------------------------------------
    # References
    # -------------------------------------------------------
    REFERENCE_WINDOW_DAYS: int = int(os.getenv("REFERENCE_WINDOW_DAYS", 15))


# Single instance that is imported everywhere
settings = Settings()
