import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from dataset_collection_client.errors import ConfigurationError
from dataset_collection_client.models import StatusPollingConfig

DEFAULT_BASE_URL = "https://api.brightdata.com"

API_KEY_VAR = "BRIGHTDATA_API_KEY"
DATASET_ID_VAR = "BRIGHTDATA_DATASET_ID"

# optional variables and the settings field each one fills
OPTIONAL_VARS = {
    "BRIGHTDATA_BASE_URL": "base_url",
    "BRIGHTDATA_OUTPUT_DIR": "output_dir",
    "BRIGHTDATA_MAX_ATTEMPTS": "max_attempts",
    "BRIGHTDATA_POLL_DELAY": "poll_delay",
}


class CollectionSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_key: str = Field(min_length=1)
    dataset_id: str = Field(min_length=1)
    base_url: str = DEFAULT_BASE_URL
    output_dir: str = "output"
    max_attempts: int = Field(default=10, ge=1)
    poll_delay: float = Field(default=30.0, ge=0)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CollectionSettings":
        """Builds settings from the environment, failing on the first missing or bad value"""
        environ = os.environ if environ is None else environ

        values = {}
        for var, field in ((API_KEY_VAR, "api_key"), (DATASET_ID_VAR, "dataset_id")):
            value = (environ.get(var) or "").strip()
            if not value:
                raise ConfigurationError(f"{var} environment variable is not set")
            values[field] = value

        for var, field in OPTIONAL_VARS.items():
            value = (environ.get(var) or "").strip()
            if value:
                values[field] = value

        try:
            return cls(**values)
        except ValidationError as e:
            field = e.errors()[0]["loc"][0]
            var = next((v for v, f in OPTIONAL_VARS.items() if f == field), field)
            raise ConfigurationError(f"Invalid value for {var}: {e.errors()[0]['msg']}") from e

    def polling_config(self) -> StatusPollingConfig:
        return StatusPollingConfig(max_attempts=self.max_attempts, delay=self.poll_delay)
