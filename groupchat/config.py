"""Application configuration settings"""

import os

from dotenv import load_dotenv

load_dotenv()


class Settings:

    # Database
    MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
    MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "groupchat")

    # Event bus, empty means in-process delivery
    REDIS_URL = os.getenv("REDIS_URL", "")

    # Pagination
    DEFAULT_LIMIT = int(os.getenv("DEFAULT_LIMIT", "50"))
    DEFAULT_OFFSET = int(os.getenv("DEFAULT_OFFSET", "0"))
    MESSAGES_DEFAULT_LIMIT = int(os.getenv("MESSAGES_DEFAULT_LIMIT", "20"))

    # Conversations
    MEMBERSHIP_UPDATE_RETRIES = int(os.getenv("MEMBERSHIP_UPDATE_RETRIES", "5"))
    DEFAULT_CHANNEL_NAME = os.getenv("DEFAULT_CHANNEL_NAME", "general")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.getenv(
        "LOG_FORMAT", "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    )


settings = Settings()
