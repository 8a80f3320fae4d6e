"""Centralized configuration using pydantic-settings."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Run defaults loaded from PODGRAB_* environment variables or .env."""

    # Output layout
    out_dir: str = "./{{podcast_title}}"
    episode_template: str = "{{release_date}}-{{title}}"
    archive_path: str = "./{{podcast_title}}/archive.json"
    metadata_format: str = "json"

    # Default field rules for --include-meta / --include-episode-meta
    feed_meta_fields: list[str] = ["title", "description", "link", "feed_url", "managing_editor"]
    episode_meta_fields: list[str] = ["title", "content_snippet", "pub_date", "creator"]

    # Downloads
    threads: int = 1
    request_timeout: int = 30
    probe_timeout: int = 3
    download_retries: int = 3
    user_agent: str = "podgrab/0.1"

    model_config = {
        "env_prefix": "PODGRAB_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
