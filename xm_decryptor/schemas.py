from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from xm_decryptor.configs import settings


class Stage(str, Enum):
    TRANSFORM = "transform"
    TAGS = "tags"
    ASSEMBLY = "assembly"


class PipelineOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    dry_run: bool = Field(False, description="Parse and decrypt without materialising the output artifact.")
    strip_cipher_frames: bool = Field(
        default_factory=lambda: settings.strip_cipher_frames,
        description="Drop the frames describing the removed encryption from the rewritten tag block.",
    )
    embed_tags: bool = Field(
        default_factory=lambda: settings.embed_tags,
        description="Prepend the rewritten tag block to the recovered audio.",
    )
    language_width: Optional[int] = Field(
        default_factory=lambda: settings.language_code_width,
        description="Force a 2 or 3 byte language code in language frames, None to detect it.",
    )

    @field_validator("language_width")
    @classmethod
    def validate_language_width(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value not in (2, 3):
            raise ValueError("language_width must be 2, 3 or None")
        return value


class ContainerVariant(BaseModel):
    model_config = ConfigDict(frozen=True)

    id3_version: int = Field(..., description="Major version of the container's ID3v2 tag block.")
    language_width: int = Field(..., description="Width of the language code found in language frames.")
    audio_extension: str = Field(..., description="Extension of the recovered audio stream.")
    encrypted_size: int = Field(..., description="Length of the encrypted span.")

    def __str__(self):
        return f"ID3v2.{self.id3_version}, {self.language_width}-byte language, {self.audio_extension}"
