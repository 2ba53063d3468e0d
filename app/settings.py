import os

db_url = os.environ.get("DB_URL", "sqlite://bookings.db")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

mailgun_api_url = os.environ.get("MAILGUN_API_URL", "https://api.mailgun.net/v3")
mailgun_username = os.environ.get("MAILGUN_USERNAME", "api")
mailgun_api_key = os.environ.get("MAILGUN_API_KEY", "")
mailgun_domain = os.environ.get(
    "MAILGUN_DOMAIN", "sandbox3e3b7c05691c447685c33a057e28fff0.mailgun.org"
)
mail_sender_name = os.environ.get("MAIL_SENDER_NAME", "Prospero Bookings")
mail_timezone = os.environ.get("MAIL_TIMEZONE", "UTC")

# When true, a failed confirmation email reverts the approval it follows.
rollback_approval_on_email_failure = os.environ.get(
    "ROLLBACK_APPROVAL_ON_EMAIL_FAILURE", "false"
).lower() in ("1", "true", "yes")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
PORT = int(os.environ.get("PORT", "3002"))
