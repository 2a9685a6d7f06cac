import os

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "quizly")

# Auth settings
SECRET_KEY = os.getenv("SECRET_KEY", "quizly-access-secret")
REFRESH_SECRET_KEY = os.getenv("REFRESH_SECRET_KEY", "quizly-refresh-secret")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", 60))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 10))

# HTTP
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() in ("1", "true", "yes")
REFRESH_COOKIE_NAME = "refreshToken"
ACCESS_COOKIE_NAME = "token"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
