from typing import Any, Optional, Protocol

import pyvips  # type: ignore
from pyvips import Image  # type: ignore

from imgresizer.resizer.errors import Internal, UnsupportedFormat
from imgresizer.resizer.models import ImageInfo, Size
from imgresizer.resizer.policy import EncodePlan, FormatPolicy, normalize_format

save_suffixes = {
    'jpeg': '.jpg',
    'png': '.png',
    'webp': '.webp',
    'avif': '.avif',
    'gif': '.gif',
    'tiff': '.tif',
}

band_bits = {
    'uchar': 8,
    'char': 8,
    'ushort': 16,
    'short': 16,
    'uint': 32,
    'int': 32,
    'float': 32,
    'double': 64,
}


class Pipeline(Protocol):

  def inspect(self, body: bytes) -> ImageInfo:
    ...

  def transform(
      self,
      body: bytes,
      target: Size,
      plan: EncodePlan,
      expected_format: Optional[str] = None,
  ) -> bytes:
    ...


def format_from_loader(loader: str) -> str:
  # 'jpegload_buffer' -> 'jpeg'
  return loader.removesuffix('_buffer').removesuffix('_source').removesuffix('load')


def bits_per_sample(image: Image) -> int:
  for name in ['bits-per-sample', 'heif-bitdepth']:
    if image.get_typeof(name) != 0:
      return int(image.get(name))
  return band_bits.get(image.format, 8)


class VipsPipeline:

  def __init__(self, policy: FormatPolicy):
    self.policy = policy

  def _load(self, body: bytes) -> Image:
    try:
      return Image.new_from_buffer(body, '')
    except pyvips.Error as e:
      raise UnsupportedFormat(f'cannot decode image: {e.message.strip()}') from e

  def inspect(self, body: bytes) -> ImageInfo:
    image = self._load(body)
    return ImageInfo(
        format=format_from_loader(image.get('vips-loader')),
        size=Size.from_image(image),
        bits_per_sample=bits_per_sample(image))

  def transform(
      self,
      body: bytes,
      target: Size,
      plan: EncodePlan,
      expected_format: Optional[str] = None,
  ) -> bytes:
    info = self.inspect(body)
    self.policy.check_supported(info)

    if expected_format is not None and (
        normalize_format(info.format) != normalize_format(expected_format)):
      raise UnsupportedFormat(f'expected {expected_format} image, got {info.format}')

    suffix = save_suffixes.get(plan.format)
    if suffix is None:
      raise UnsupportedFormat(f'cannot encode {plan.format} images')

    options: dict[str, Any] = {}
    if plan.quality is not None:
      options['Q'] = plan.quality

    try:
      image: Image = Image.thumbnail_buffer(body, target.width, height=target.height, size='force')
      return image.write_to_buffer(suffix, **options)
    except pyvips.Error as e:
      raise Internal(f'failed to resize: {e.message.strip()}') from e
