"""
Gallery ordering rules for product images

Every gallery is a list of ``{url, order}`` entries. Uploaded batches are sorted
by the first integer in each original filename (numbered files first, ties and
unnumbered files alphabetically), then numbered positionally.
"""

import re
from typing import Any, Iterable, List, Optional, Sequence, Tuple, TypeVar

from portfolio_cms.core.exceptions import NotFoundException, ValidationException
from portfolio_cms.schemas.product import GalleryImage

T = TypeVar("T")

ORDER_TOKEN_PATTERN = re.compile(r"\d+")


def order_token(filename: str) -> Optional[int]:
    """First integer substring of a filename, or None"""
    match = ORDER_TOKEN_PATTERN.search(filename or "")
    return int(match.group()) if match else None


def upload_sort_key(filename: str) -> Tuple[int, int, str]:
    token = order_token(filename)
    if token is None:
        return (1, 0, filename)
    return (0, token, filename)


def sort_by_filename(items: Iterable[T], name_of=lambda item: item) -> List[T]:
    """Sort uploads by order token; ``name_of`` extracts the original filename"""
    return sorted(items, key=lambda item: upload_sort_key(name_of(item)))


def normalize(images: Optional[Sequence[Any]]) -> List[GalleryImage]:
    """Coerce stored galleries, including legacy URL strings, to GalleryImage entries"""
    normalized = []
    for index, item in enumerate(images or []):
        if isinstance(item, GalleryImage):
            normalized.append(item)
        elif isinstance(item, str):
            normalized.append(GalleryImage(url=item, order=index))
        else:
            normalized.append(GalleryImage.model_validate(item))
    return normalized


def build(urls: Sequence[str], start: int = 0) -> List[GalleryImage]:
    """Number URLs positionally from ``start``"""
    return [GalleryImage(url=url, order=start + index) for index, url in enumerate(urls)]


def next_order(images: Sequence[GalleryImage]) -> int:
    return max((image.order for image in images), default=-1) + 1


def append(images: Sequence[Any], urls: Sequence[str]) -> List[GalleryImage]:
    """Keep existing orders and number new images after the current maximum"""
    current = normalize(images)
    return current + build(urls, start=next_order(current))


def reorder(entries: Any) -> List[GalleryImage]:
    """
    Replace the gallery order with the given sequence

    Args:
        entries: List of URLs or ``{"url": ...}`` objects in display order

    Raises:
        ValidationException: If entries is not a list or holds no usable URL
    """
    if not isinstance(entries, list):
        raise ValidationException("images must be an array", field="images", value=entries)

    urls = []
    for entry in entries:
        if isinstance(entry, str) and entry:
            urls.append(entry)
        elif isinstance(entry, dict) and isinstance(entry.get("url"), str) and entry["url"]:
            urls.append(entry["url"])

    if not urls:
        raise ValidationException("images must contain at least one valid image", field="images")
    return build(urls)


def apply_order_updates(images: Sequence[Any], updates: Any) -> List[GalleryImage]:
    """
    Set new orders for the images at the given indexes; other images keep theirs

    Raises:
        ValidationException: On a malformed payload or an index outside the gallery
    """
    if not isinstance(updates, list):
        raise ValidationException("imageOrder must be an array", field="imageOrder", value=updates)

    current = [image.model_copy() for image in normalize(images)]
    for update in updates:
        if not isinstance(update, dict) or not isinstance(update.get("index"), int) or not isinstance(update.get("order"), int):
            raise ValidationException("Each imageOrder entry needs integer index and order", field="imageOrder", value=update)
        index = update["index"]
        if index < 0 or index >= len(current):
            raise ValidationException(f"Invalid image index: {index}", field="imageOrder", value=index)
        current[index].order = update["order"]

    return sorted(current, key=lambda image: image.order)


def remove(images: Sequence[Any], order: int) -> Tuple[List[GalleryImage], GalleryImage]:
    """
    Remove the image with the given order and renumber the rest positionally

    Returns:
        (remaining gallery, removed image)

    Raises:
        NotFoundException: If no image has that order
    """
    current = sorted(normalize(images), key=lambda image: image.order)
    removed = next((image for image in current if image.order == order), None)
    if removed is None:
        raise NotFoundException("Image", identifier=order, message=f"Image with order {order} not found")

    remaining = [image.url for image in current if image is not removed]
    return build(remaining), removed


def dump(images: Sequence[GalleryImage]) -> List[dict]:
    """Storage form of a gallery"""
    return [{"url": image.url, "order": image.order} for image in images]
