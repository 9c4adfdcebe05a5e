import os
from decimal import Decimal

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
STORE_BACKEND = os.getenv("STORE_BACKEND", "postgres" if DATABASE_URL else "memory")

# Telegram notifications
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
TELEGRAM_ADMIN_ID = os.getenv("TELEGRAM_ADMIN_ID")

# Cloudinary
CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")

# Admin API key (pbkdf2_sha256 hash preferred, plain key for local setups)
ADMIN_API_KEY_HASH = os.getenv("ADMIN_API_KEY_HASH")
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY")

# Ledger rules
CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "₹")
MIN_WITHDRAWAL = Decimal(os.getenv("MIN_WITHDRAWAL", "50"))
SIGNUP_BONUS = Decimal(os.getenv("SIGNUP_BONUS", "5"))
REFERRER_SIGNUP_BONUS = Decimal(os.getenv("REFERRER_SIGNUP_BONUS", "0"))
FIRST_TASK_REFERRAL_BONUS = Decimal(os.getenv("FIRST_TASK_REFERRAL_BONUS", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
