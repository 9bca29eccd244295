"""Google OAuth constants."""

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
REDIRECT_HOST = "127.0.0.1"
REDIRECT_PORT = 8085
REDIRECT_URI = f"http://{REDIRECT_HOST}:{REDIRECT_PORT}"

SCOPES = (
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/drive",
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/documents",
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/presentations",
    "https://www.googleapis.com/auth/tasks",
)

DEFAULT_ACCOUNT = "default"
KEYRING_SERVICE = "wscli"
KEYRING_INDEX_SUFFIX = ".index"
KEYRING_INDEX_KEY = "accounts"
TOKEN_DIRNAME = "tokens"
TOKEN_FILE_PREFIX = "token_"
TOKEN_FILE_SUFFIX = ".json"

# Refresh this many seconds before the recorded expiry.
REFRESH_SKEW_SEC = 60
DEFAULT_EXPIRES_IN_SEC = 3600
ASSERTION_LIFETIME_SEC = 3600
CALLBACK_TIMEOUT_SEC = 120
MANUAL_PROMPT_DELAY_SEC = 3

CREDENTIALS_FILENAMES = ("credentials.json", ".credentials.json")

SUCCESS_HTML = (
    "<!doctype html>"
    "<html lang=\"en\">"
    "<head>"
    "<meta charset=\"utf-8\" />"
    "<title>Authorization successful</title>"
    "</head>"
    "<body>"
    "<h1>Authorization successful!</h1>"
    "<p>You can close this window and return to the terminal.</p>"
    "</body>"
    "</html>"
)
