import logging
from dataclasses import dataclass
from typing import Optional

from xm_decryptor.configs import settings
from xm_decryptor.const import CIPHER_FRAME_IDS
from xm_decryptor.drm import xm_transform
from xm_decryptor.drm.xm_transform import HEADER_SIZE, DecryptionError
from xm_decryptor.id3 import codec
from xm_decryptor.id3.codec import TagError
from xm_decryptor.schemas import ContainerVariant, PipelineOptions, Stage
from xm_decryptor.utils.audio_format import sniff_extension

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """A container failed to process; ``stage`` names the component that failed and ``cause`` its error."""

    def __init__(self, stage: Stage, cause: Exception):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage.value} stage failed: {type(cause).__name__}: {cause}")


@dataclass
class OutputArtifact:
    """
    Result of processing one container.

    Attributes:
        data (Optional[bytes]): Tag block followed by the recovered audio, None in dry-run mode.
        extension (str): Extension of the recovered audio format.
        variant (ContainerVariant): What was detected in the container.
    """

    data: Optional[bytes]
    extension: str
    variant: ContainerVariant

    def __repr__(self):
        size = "dry-run" if self.data is None else f"{len(self.data)} bytes"
        return f"<OutputArtifact {self.extension}, {size}>"

    @property
    def materialized(self) -> bool:
        return self.data is not None

    def file_name(self, stem: str) -> str:
        """Output file name keeping the input's base name, e.g. ``A`` -> ``A.m4a``."""
        return f"{stem}.{self.extension}"


def split_container(input_bytes: bytes) -> tuple[memoryview, memoryview]:
    """Split a container into its fixed-size header region and the payload that follows."""
    data = memoryview(input_bytes)
    return data[:HEADER_SIZE], data[HEADER_SIZE:]


def _rewrite_tags(block: codec.TagBlock, options: PipelineOptions) -> bytes:
    if not options.embed_tags:
        return b""
    if options.strip_cipher_frames:
        for frame_id in CIPHER_FRAME_IDS:
            block.remove(frame_id)
    return codec.serialize(block)


def process(input_bytes: bytes, options: Optional[PipelineOptions] = None) -> OutputArtifact:
    """
    Decrypt one .xm container.

    Args:
        input_bytes (bytes): The whole container.
        options (Optional[PipelineOptions]): Processing options, defaults from settings.

    Returns:
        OutputArtifact: The recovered file, without data when ``options.dry_run`` is set.

    Raises:
        PipelineError: Wrapping the transform engine or tag codec error, with the failing stage.
    """
    options = options or PipelineOptions()
    header, payload = split_container(input_bytes)

    try:
        state = xm_transform.derive_state(header, payload)
        decrypted = xm_transform.decrypt_payload(state, payload)
    except DecryptionError as e:
        raise PipelineError(Stage.TRANSFORM, e) from e
    except TagError as e:
        raise PipelineError(Stage.TAGS, e) from e

    try:
        block = codec.parse(
            bytes(header) + decrypted[: state.tag_size - HEADER_SIZE], language_width=options.language_width
        )
    except TagError as e:
        raise PipelineError(Stage.TAGS, e) from e

    try:
        audio = xm_transform.decode_audio(state, decrypted)
    except DecryptionError as e:
        raise PipelineError(Stage.TRANSFORM, e) from e

    extension = sniff_extension(audio)
    if extension is None:
        logger.debug("Unrecognised audio format, falling back to .%s", settings.default_audio_extension)
        extension = settings.default_audio_extension

    variant = ContainerVariant(
        id3_version=block.version,
        language_width=block.language_width,
        audio_extension=extension,
        encrypted_size=state.encrypted_size,
    )

    try:
        tag_bytes = _rewrite_tags(block, options)
    except ValueError as e:
        raise PipelineError(Stage.ASSEMBLY, e) from e

    if options.dry_run:
        return OutputArtifact(None, extension, variant)
    return OutputArtifact(tag_bytes + audio, extension, variant)
