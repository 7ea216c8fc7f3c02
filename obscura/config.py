"""Runtime settings read from the environment (and `.env` at the repo root)."""

import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel

ROOT = Path(__file__).parent.parent
DEFAULT_DATA_DIR = ROOT / "data"


class Settings(BaseModel):
    data_dir: Path = DEFAULT_DATA_DIR

    # Generator backend (text + images)
    generator_url: str = "http://localhost:5001"
    generator_api_key: str = ""
    generator_format: Literal["koboldcpp", "openai"] = "koboldcpp"
    generator_model: str = ""
    image_model: str = ""
    generator_timeout: float = 120.0

    # Upload backend for rendered images
    uploader: Literal["local", "cloudinary"] = "local"
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""

    # Operation registry entries older than this are evicted (seconds)
    operation_max_age: float = 3600.0


_ENV_KEYS: dict[str, str] = {
    "DATA_DIR": "data_dir",
    "GENERATOR_URL": "generator_url",
    "GENERATOR_API_KEY": "generator_api_key",
    "GENERATOR_FORMAT": "generator_format",
    "GENERATOR_MODEL": "generator_model",
    "IMAGE_MODEL": "image_model",
    "GENERATOR_TIMEOUT": "generator_timeout",
    "UPLOADER": "uploader",
    "CLOUDINARY_CLOUD_NAME": "cloudinary_cloud_name",
    "CLOUDINARY_API_KEY": "cloudinary_api_key",
    "CLOUDINARY_API_SECRET": "cloudinary_api_secret",
    "OPERATION_MAX_AGE": "operation_max_age",
}


def load_settings(**overrides) -> Settings:
    """Build Settings from defaults, then environment, then explicit overrides.

    Values from the environment are validated (and coerced) by pydantic, so
    GENERATOR_TIMEOUT="30" becomes 30.0 and an unknown UPLOADER is rejected.
    """
    load_dotenv(ROOT / ".env")
    fields: dict = {}
    for env_key, field in _ENV_KEYS.items():
        value = os.getenv(env_key)
        if value:
            fields[field] = value
    fields.update({k: v for k, v in overrides.items() if v is not None})
    return Settings.model_validate(fields)
