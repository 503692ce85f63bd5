# Chatbot package init
import logging
import os


def _configure_logging() -> None:
    level_name = (os.getenv("CHATBOT_LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logger = logging.getLogger("chatbot")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[CHATBOT][%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(level)

    llm_level_name = (os.getenv("CHATBOT_LLM_LOG_LEVEL") or level_name).upper()
    llm_level = getattr(logging, llm_level_name, level)
    logging.getLogger("chatbot.llm").setLevel(llm_level)


_configure_logging()
