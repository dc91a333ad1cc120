import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///zerotrust.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    JWT_SECRET = os.getenv("JWT_SECRET", "dev-jwt-secret")
    SESSION_TTL = timedelta(minutes=int(os.getenv("SESSION_MINUTES", 60)))

    OTP_TTL = timedelta(minutes=int(os.getenv("OTP_MINUTES", 5)))
    OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", 5))

    LOCKOUT_THRESHOLD = int(os.getenv("LOCKOUT_THRESHOLD", 5))
    LOCKOUT_DURATION = timedelta(minutes=int(os.getenv("LOCKOUT_MINUTES", 15)))

    LOGIN_RATE_LIMIT = int(os.getenv("LOGIN_RATE_LIMIT", 10))
    LOGIN_RATE_WINDOW = timedelta(seconds=int(os.getenv("LOGIN_RATE_SECONDS", 60)))

    AUDIT_CAPACITY = int(os.getenv("AUDIT_CAPACITY", 500))

    # ipapi.co style endpoint, "{ip}" is substituted
    GEOIP_URL = os.getenv("GEOIP_URL", "https://ipapi.co/{ip}/json/")
    GEOIP_TIMEOUT = float(os.getenv("GEOIP_TIMEOUT", 3))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_JSON = os.getenv("LOG_JSON", "1") == "1"
