import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./horselinc.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Access tokens are long lived; the mobile app keeps the user signed in
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 30)))
PASSWORD_RESET_EXPIRE_HOURS = int(os.getenv("PASSWORD_RESET_EXPIRE_HOURS", "1"))

# Public base URL of the admin client (Stripe redirects, reset links)
BASE_URL = os.getenv("BASE_URL", "http://localhost:4200")

# Stripe Connect Configuration
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_CLIENT_ID = os.getenv("STRIPE_CLIENT_ID")
STRIPE_API_URL = os.getenv("STRIPE_API_URL", "https://api.stripe.com/v1")
STRIPE_CONNECT_URL = os.getenv("STRIPE_CONNECT_URL", "https://connect.stripe.com")
# Service fee charged to the paying user on top of the invoice, e.g. 0.05 for 5%
STRIPE_SERVICE_FEE_PERCENTAGE = float(os.getenv("STRIPE_SERVICE_FEE_PERCENTAGE", "0.05"))

# OneSignal push notifications
ONESIGNAL_APP_ID = os.getenv("ONESIGNAL_APP_ID")
ONESIGNAL_API_KEY = os.getenv("ONESIGNAL_API_KEY")
ONESIGNAL_API_URL = os.getenv("ONESIGNAL_API_URL", "https://onesignal.com/api/v1/notifications")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "HorseLinc <noreply@horselinc.com>")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@horselinc.com")

# Terms of service and privacy policy HTML
LEGAL_DOCS_DIR = os.getenv("LEGAL_DOCS_DIR", str(Path(__file__).resolve().parent / "legal"))
