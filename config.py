"""Environment-driven settings: app mode, credit packages, animation models."""

from __future__ import annotations

import logging
import os
from typing import Optional

ENVIRONMENT = os.environ.get("ENVIRONMENT", "development")

SIMULATED_MODE_ERROR = "API disabled - using simulated mode"

# Queue numbers are 5-digit strings. The two write paths start at
# different values; see DESIGN.md.
QUEUE_NUMBER_WIDTH = 5
OUTLINE_QUEUE_START = 10001
SAVE_SUBMISSION_QUEUE_START = 10000

# Credits
OUTLINE_COST = 1
ANIMATION_COST = 1
DEFAULT_TEST_CREDITS = 10

# Animation polling
POLL_INTERVAL_SECONDS = float(os.environ.get("ANIMATION_POLL_INTERVAL", "1"))
POLL_PERSIST_EVERY = 3
POLL_BUDGET_SECONDS = float(os.environ.get("ANIMATION_POLL_BUDGET", "300"))

CREDIT_PACKAGES = {
    "credits-10": {
        "name": "10 Credits",
        "credits": 10,
        "price": 500,  # SGD cents
        "description": "Perfect for trying out the app",
        "popular": False,
        "stripe_price_id": os.environ.get("STRIPE_PRICE_10_CREDITS", ""),
    },
    "credits-20": {
        "name": "20 Credits",
        "credits": 20,
        "price": 1000,
        "description": "Great for regular use",
        "popular": False,
        "stripe_price_id": os.environ.get("STRIPE_PRICE_20_CREDITS", ""),
    },
    "credits-42": {
        "name": "42 Credits",
        "credits": 42,
        "price": 2000,
        "description": "Best value for families",
        "popular": True,
        "stripe_price_id": os.environ.get("STRIPE_PRICE_42_CREDITS", ""),
    },
}

WAVESPEED_BASE_URL = "https://api.wavespeed.ai/api/v3"

ANIMATION_MODELS = {
    "HAILUO_FAST": {
        "name": "hailuo-02",
        "display_name": "Hailuo Fast",
        "api_url": f"{WAVESPEED_BASE_URL}/minimax/hailuo-02/fast",
        "duration": 6,
        "resolution": "HD",
        "payload": {
            "enable_prompt_expansion": True,
            "go_fast": True,
        },
    },
    "SEEDANCE": {
        "name": "seedance-v1-lite",
        "display_name": "Seedance Lite",
        "api_url": f"{WAVESPEED_BASE_URL}/bytedance/seedance-v1-lite-i2v-480p",
        "duration": 5,
        "resolution": "480P",
        "payload": {
            "seed": -1,
        },
    },
}

DEFAULT_ANIMATION_MODEL = "SEEDANCE"

VIDEO_PROMPTS = [
    "Bring this hand-colored family drawing to life with gentle, joyful "
    "motion. Keep the crayon texture and colors exactly as drawn.",
    "Animate the family in this coloring page waving and smiling, with a "
    "soft breeze moving hair and clothes.",
    "Make this colored drawing come alive with playful, storybook-style "
    "movement while preserving the original artwork.",
]

OUTLINE_MODEL = os.environ.get("OUTLINE_MODEL", "gemini-2.5-flash-image-preview")

OUTLINE_PROMPT = """Create a simple, clean outline drawing from this family photo that's perfect for coloring. Make it:
- Simple line art with clear, bold outlines
- Minimal details - just the essential shapes and lines
- High contrast black lines on white background
- Suitable for children to color
- Clean and artistic, not too complex"""


def app_mode() -> str:
  """Return "simulated" or "real".

  FORCE_APP_MODE wins when set; otherwise only production talks to the
  external providers.
  """
  forced = os.environ.get("FORCE_APP_MODE", "").strip().lower()
  if forced in ("simulated", "real"):
    return forced
  env = os.environ.get("ENVIRONMENT", ENVIRONMENT)
  return "real" if env == "production" else "simulated"


def is_simulated() -> bool:
  return app_mode() == "simulated"


def is_real() -> bool:
  return not is_simulated()


def is_production() -> bool:
  return os.environ.get("ENVIRONMENT", ENVIRONMENT) == "production"


def log_mode() -> None:
  logging.info("App running in %s mode", app_mode())
  if os.environ.get("FORCE_APP_MODE"):
    logging.info("Force mode override: %s", os.environ["FORCE_APP_MODE"])


def get_model_config(model_type: Optional[str] = None) -> dict:
  """Return the animation model settings for a model key.

  Unknown or empty keys resolve to ANIMATION_MODEL from the environment,
  then to the built-in default.
  """
  if model_type and model_type in ANIMATION_MODELS:
    return ANIMATION_MODELS[model_type]
  env_model = os.environ.get("ANIMATION_MODEL", "")
  if env_model in ANIMATION_MODELS:
    return ANIMATION_MODELS[env_model]
  return ANIMATION_MODELS[DEFAULT_ANIMATION_MODEL]


def get_package(package_id: str) -> Optional[dict]:
  return CREDIT_PACKAGES.get(package_id)
