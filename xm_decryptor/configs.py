from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    log_level: str = "INFO"  # The logging level to use.
    xm_key: str = Field(
        "ximalaya" * 4, description="AES-256 key used by the app to encrypt the audio span of .xm files."
    )
    input_extension: str = "xm"  # File extension picked up when a directory is given.
    language_code_width: Optional[int] = None  # Force the COMM/USLT language width, None to detect.
    strip_cipher_frames: bool = True  # Drop TSIZ/TSRC/TENC/TSSE from the rewritten tag block.
    embed_tags: bool = True  # Prepend the rewritten tag block to the recovered audio.
    default_audio_extension: str = "m4a"  # Extension used when the audio format cannot be sniffed.
    max_workers: int = 4  # Number of files decrypted in parallel.

    @field_validator("xm_key")
    @classmethod
    def validate_key_length(cls, value: str) -> str:
        if len(value.encode("utf-8")) not in (16, 24, 32):
            raise ValueError("xm_key must encode to 16, 24 or 32 bytes")
        return value

    @field_validator("language_code_width")
    @classmethod
    def validate_language_width(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value not in (2, 3):
            raise ValueError("language_code_width must be 2, 3 or unset")
        return value

    class Config:
        env_file = ".env"
        env_prefix = "XM_"
        extra = "ignore"


settings = Settings()
