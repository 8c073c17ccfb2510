import dataclasses
import re
from typing import Optional, Tuple

from pyvips import Image  # type: ignore

variant_name_re = re.compile(r'^(\d+)x(\d+)\.([a-z0-9]+)$')


@dataclasses.dataclass(eq=True, frozen=True, order=True)
class Size:
  width: int
  height: int

  @classmethod
  def from_filename_convention(cls, s: str) -> Optional[Tuple['Size', str]]:
    m = variant_name_re.match(s)
    if m is None:
      return None

    size = cls(int(m[1]), int(m[2]))
    if size.width <= 0 or size.height <= 0:
      return None

    return size, m[3]

  @classmethod
  def from_image(cls, image: Image) -> 'Size':
    return cls(image.get('width'), image.get('height'))

  def filename(self, fmt: str) -> str:
    return f'{self.width}x{self.height}.{fmt}'

  def covers(self, other: 'Size') -> bool:
    return other.width <= self.width and other.height <= self.height

  def __str__(self) -> str:
    return f'{self.width}x{self.height}'


@dataclasses.dataclass(frozen=True)
class ImageInfo:
  format: str
  size: Size
  bits_per_sample: int = 8


@dataclasses.dataclass(frozen=True)
class OriginalAsset:
  body: bytes
  info: ImageInfo


@dataclasses.dataclass(frozen=True)
class Variant:
  size: Size
  format: str
  body: bytes
