"""
Configuration

Settings are read from the environment (a local .env file is loaded first).
"""
import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7

RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
MAIL_FROM_NAME = os.getenv("MAIL_FROM_NAME", "MAaD Makes")
MAIL_FROM_ADDRESS = os.getenv("MAIL_FROM_ADDRESS", "maad.makes@gmail.com")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", MAIL_FROM_ADDRESS)
SIGNATURE_NAME = os.getenv("SIGNATURE_NAME", "Martinus")

CURRENCY_SUFFIX = os.getenv("CURRENCY_SUFFIX", "kr")
MAX_ORDERS_PER_DAY = int(os.getenv("MAX_ORDERS_PER_DAY", 5))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", 8000))
