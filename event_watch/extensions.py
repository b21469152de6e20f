"""
Shared client instances — Redis, OpenAI, Apify.

Importing this module is always safe (even when env vars are missing during
tests): clients whose credentials are absent stay None and a warning is logged.
"""
import logging
import redis

from event_watch.config import REDIS_URL, OPENAI_API_KEY, APIFY_API_TOKEN

logger = logging.getLogger('event_watch.extensions')

# ── Redis ─────────────────────────────────────────────────────────────────────
# Connection is lazy: nothing touches the network until the first command.
redis_client = redis.from_url(REDIS_URL, decode_responses=True)

# ── OpenAI ────────────────────────────────────────────────────────────────────
openai_client = None
if OPENAI_API_KEY:
    try:
        from openai import OpenAI
        # with_retry owns retries, the SDK must not add its own
        openai_client = OpenAI(api_key=OPENAI_API_KEY, max_retries=0)
        logger.info("OpenAI client initialized successfully")
    except Exception as e:
        logger.error("Error initializing OpenAI client: %s", e)
else:
    logger.warning("OPENAI_API_KEY not set — classification is disabled")

# ── Apify ─────────────────────────────────────────────────────────────────────
apify_client = None
if APIFY_API_TOKEN:
    try:
        from apify_client import ApifyClient
        apify_client = ApifyClient(APIFY_API_TOKEN)
        logger.info("Apify client initialized successfully")
    except Exception as e:
        logger.error("Error initializing Apify client: %s", e)
else:
    logger.warning("APIFY_API_TOKEN not set — Instagram scraping is disabled")
