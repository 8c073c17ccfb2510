import dataclasses
from typing import Optional

from imgresizer.resizer.errors import InvalidArgument, UnsupportedFormat
from imgresizer.resizer.models import ImageInfo

ADJUST_QUALITY_ABOVE = 800
OUTPUT_QUALITY = 94
FORMATS_WITH_QUALITY = frozenset(['jpeg', 'png', 'webp', 'avif'])

# Formats the pipeline can encode, by name.
ENCODABLE_FORMATS = frozenset(['jpeg', 'png', 'webp', 'avif', 'gif', 'tiff'])

# Formats a client may ask for.
REQUESTABLE_FORMATS = frozenset(['jpeg', 'png', 'webp', 'avif'])

format_aliases = {
    'jpg': 'jpeg',
    'heif': 'avif',
    'tif': 'tiff',
}

MAX_HEIF_BITS_PER_SAMPLE = 8


def normalize_format(fmt: str) -> str:
  f = fmt.lower().lstrip('.')
  return format_aliases.get(f, f)


def parse_requested_format(fmt: Optional[str]) -> Optional[str]:
  if fmt is None or fmt == '':
    return None

  f = normalize_format(fmt)
  if f not in REQUESTABLE_FORMATS:
    raise InvalidArgument(f'unsupported output format: {fmt}')
  return f


@dataclasses.dataclass(eq=True, frozen=True)
class EncodePlan:
  format: str
  quality: Optional[int] = None


class FormatPolicy:

  def __init__(
      self,
      quality_threshold: int = ADJUST_QUALITY_ABOVE,
      quality_formats: frozenset[str] = FORMATS_WITH_QUALITY,
      quality: int = OUTPUT_QUALITY,
  ):
    self.quality_threshold = quality_threshold
    self.quality_formats = quality_formats
    self.quality = quality

  @staticmethod
  def check_supported(info: ImageInfo) -> None:
    if info.format == 'heif' and info.bits_per_sample > MAX_HEIF_BITS_PER_SAMPLE:
      raise UnsupportedFormat('Only HEIF/AVIF images up to 8-bit are supported')

  @staticmethod
  def output_format(source: str, requested: Optional[str] = None) -> str:
    if requested is not None:
      return normalize_format(requested)

    fmt = normalize_format(source)
    if fmt not in ENCODABLE_FORMATS:
      raise UnsupportedFormat(f'cannot encode {source} images; request an output format')
    return fmt

  def plan(self, fmt: str, width: int) -> EncodePlan:
    if width > self.quality_threshold and fmt in self.quality_formats:
      return EncodePlan(format=fmt, quality=self.quality)
    return EncodePlan(format=fmt)
