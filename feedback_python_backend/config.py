"""Shared environment configuration constants for the feedback backend."""
import os

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Pipeline tuning ---
URGENCY_THRESHOLD = int(os.getenv("URGENCY_THRESHOLD", "4"))
NEUTRAL_SENTIMENT_SCORE = 50.0
NARRATIVE_SAMPLE_SIZE = int(os.getenv("NARRATIVE_SAMPLE_SIZE", "50"))
ROOT_CAUSE_SAMPLE_SIZE = int(os.getenv("ROOT_CAUSE_SAMPLE_SIZE", "10"))
URGENT_EXCERPT_SAMPLE_SIZE = int(os.getenv("URGENT_EXCERPT_SAMPLE_SIZE", "5"))
URGENT_EXCERPT_CHARS = int(os.getenv("URGENT_EXCERPT_CHARS", "150"))
TOP_THEME_STATS = 5
MAX_CLUSTERING_CONCURRENCY = int(os.getenv("MAX_CLUSTERING_CONCURRENCY", "4"))

# --- HTTP ---
CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]
