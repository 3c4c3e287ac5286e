# backend/app/config.py
from pydantic_settings import BaseSettings
from urllib.parse import quote_plus


class Settings(BaseSettings):
    # PostgreSQL
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"
    DB_HOST: str = "localhost"
    DB_PORT: str = "5432"
    DB_NAME: str = "briefcase"
    # Full URL wins over the DB_* parts when set
    DATABASE_URL: str = ""

    # Bounded pool: callers wait up to DB_POOL_TIMEOUT for a connection
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 0
    DB_POOL_TIMEOUT: float = 30.0

    @property
    def DATA_DB_URL(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        password = quote_plus(self.DB_PASSWORD)
        return f"postgresql+asyncpg://{self.DB_USER}:{password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # --- Safe zone defaults (degrees) ---
    SAFE_ZONE_RADIUS_DEFAULT: float = 0.05
    GPS_DRIFT_THRESHOLD_DEFAULT: float = 0.01
    SAFE_ZONE_CENTER_LAT: float = -2.148252
    SAFE_ZONE_CENTER_LON: float = 30.542430

    # --- Device telemetry ---
    DEFAULT_DEVICE_ID: str = "briefcase-01"
    DEVICE_SHARED_SECRET: str = ""
    INGEST_TIMEOUT_SECONDS: float = 10.0

    # --- Briefcase actuator (ESP32) ---
    ESP32_URL: str = "http://192.168.137.52"
    DEVICE_TIMEOUT_SECONDS: float = 5.0

    # --- MQTT transport ---
    MQTT_ENABLED: bool = False
    MQTT_BROKER: str = "localhost"
    MQTT_PORT: int = 1883
    MQTT_USER: str = ""
    MQTT_PASSWORD: str = ""
    MQTT_GPS_TOPIC: str = "briefcase/+/gps"
    MQTT_MIN_FIX_QUALITY: int = 1

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "briefcase_tracker.log"

    # --- Dashboard ---
    POLL_INTERVAL_SECONDS: float = 10.0
    DASHBOARD_API_URL: str = "http://localhost:8000"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()


def get_settings() -> Settings:
    return settings
