"""Rose entry point."""

import logging
import os
import sys

from dotenv import find_dotenv, load_dotenv

from .logging import configure_logger


def main() -> None:
    """Main entry point."""
    load_dotenv(find_dotenv(usecwd=True))

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    configure_logger(os.getenv("ROSE_LOG_DIR"))

    from .telegram import TelegramBot

    try:
        bot = TelegramBot()
    except ValueError as e:
        print(f"❌ Missing configuration: {e}")
        print("Check TELEGRAM_TOKEN and DEEPSEEK_API_KEY in your .env file")
        sys.exit(1)

    bot.run()


if __name__ == "__main__":
    main()
