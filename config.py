import os

from dotenv import load_dotenv

load_dotenv()


def _csv(value: str | None) -> list[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- AI providers (credentials are snapshotted by the provider registry) ---
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
    ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY")
    GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY")
    DEEPSEEK_API_KEY = os.environ.get("DEEPSEEK_API_KEY")
    DEEPSEEK_BASE_URL = os.environ.get("DEEPSEEK_BASE_URL", "https://api.deepseek.com")

    DEFAULT_ENGINE = os.environ.get("DEFAULT_ENGINE", "openai")
    DEFAULT_MODEL = os.environ.get("DEFAULT_MODEL", "gpt-5")
    PRIMARY_ENGINE = os.environ.get("PRIMARY_ENGINE", "openai")
    # Used by the primary provider for translation / extraction / search classification
    OPENAI_UTILITY_MODEL = os.environ.get("OPENAI_UTILITY_MODEL", "gpt-4o-mini")
    OPENAI_EXTRACTION_MODEL = os.environ.get("OPENAI_EXTRACTION_MODEL", "gpt-4o")
    AI_TIMEOUT = float(os.environ.get("AI_TIMEOUT", "30"))
    AI_MAX_ATTEMPTS = int(os.environ.get("AI_MAX_ATTEMPTS", "3"))
    AI_MAX_OUTPUT_TOKENS = int(os.environ.get("AI_MAX_OUTPUT_TOKENS", "1000"))
    SYSTEM_PROMPT = os.environ.get(
        "SYSTEM_PROMPT",
        "You are a helpful assistant integrated into a chat app. "
        "Answer questions concisely and accurately.",
    )

    # --- Messaging transport ---
    MESSAGE_TRANSPORT = os.environ.get("MESSAGE_TRANSPORT", "telnyx")  # telnyx | bridge
    BRIDGE_SEND_URL = os.environ.get("BRIDGE_SEND_URL")
    BRIDGE_TOKEN = os.environ.get("BRIDGE_TOKEN")
    BOT_NAME = os.environ.get("BOT_NAME", "bot")

    # --- Telnyx (SMS) ---
    TELNYX_API_KEY = os.environ.get("TELNYX_API_KEY")
    TELNYX_PUBLIC_KEY = os.environ.get("TELNYX_PUBLIC_KEY")
    TELNYX_FROM_NUMBER = os.environ.get("TELNYX_FROM_NUMBER")

    # --- Commands & conversation context ---
    COMMAND_PREFIX = os.environ.get("COMMAND_PREFIX", "$")
    MAX_CONTEXT_MESSAGES = int(os.environ.get("MAX_CONTEXT_MESSAGES", "10"))
    CONTEXT_EXPIRATION_HOURS = int(os.environ.get("CONTEXT_EXPIRATION_HOURS", "24"))

    # --- Reminders ---
    REMINDER_SWEEP_INTERVAL_SECONDS = float(os.environ.get("REMINDER_SWEEP_INTERVAL_SECONDS", "60"))
    REMINDER_PREFIX = os.environ.get("REMINDER_PREFIX", "⏰ Reminder: ")

    # --- Search (Google Custom Search) ---
    GOOGLE_API_KEY = os.environ.get("GOOGLE_API_KEY")
    GOOGLE_SEARCH_ENGINE_ID = os.environ.get("GOOGLE_SEARCH_ENGINE_ID")
    SEARCH_MAX_RESULTS = int(os.environ.get("SEARCH_MAX_RESULTS", "5"))
    SEARCH_TIMEOUT = float(os.environ.get("SEARCH_TIMEOUT", "15"))

    # --- Crypto prices ---
    CRYPTO_SYMBOLS = _csv(os.environ.get("CRYPTO_SYMBOLS", "BTC,ETH,LTC,BCH"))
    CRYPTO_BROADCAST_CHAT_IDS = _csv(os.environ.get("CRYPTO_BROADCAST_CHAT_IDS"))
    CRYPTO_BROADCAST_INTERVAL_HOURS = float(os.environ.get("CRYPTO_BROADCAST_INTERVAL_HOURS", "4"))
    PRICE_TIMEOUT = float(os.environ.get("PRICE_TIMEOUT", "10"))

    # --- Logging ---
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

settings = Settings()
