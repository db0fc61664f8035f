import os

DB = {
    "host": os.getenv("BEREA_DB_HOST", "localhost"),
    "port": int(os.getenv("BEREA_DB_PORT", "5432")),
    "dbname": os.getenv("BEREA_DB_NAME", "berea"),
    "user": os.getenv("BEREA_DB_USER", "berea"),
    "password": os.getenv("BEREA_DB_PASSWORD", "bereapassword"),
}

API_TITLE = "Berea Study API"
API_VERSION = "0.1.0"

APP_ENV = os.getenv("APP_ENV", "development")
APP_URL = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")
EXPOSE_ERROR_DETAILS = os.getenv("EXPOSE_ERROR_DETAILS", "0") == "1"
