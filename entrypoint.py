import uvicorn
from constants import HOST, PORT, LOG_LEVEL, LOG_FILE, RELOAD, STORE_BACKEND
from logging_config import setup_logging, get_logger

setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)

if __name__ == "__main__":
    logger.info(f"Starting ephemeral rooms server on {HOST}:{PORT} ({STORE_BACKEND} store)")
    if STORE_BACKEND == "memory" and RELOAD:
        logger.warning("Reload restarts the process and wipes the memory store")
    uvicorn.run("app:app", host=HOST, port=PORT, reload=RELOAD, log_level=LOG_LEVEL.lower())
