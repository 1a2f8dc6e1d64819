"""Daily fortune slips: seeded picks of a background and a text, drawn as a JPEG."""

from __future__ import annotations

import base64
import io
import json
import os
import random
import zipfile
from datetime import date
from pathlib import Path
from typing import Optional, Union

from PIL import Image, ImageDraw, ImageFont

PathLike = Union[str, "os.PathLike[str]"]

TABLE = (
    "车万",
    "DC4",
    "爱因斯坦",
    "星空列车",
    "樱云之恋",
    "富婆妹",
    "李清歌",
    "公主连结",
    "原神",
    "明日方舟",
    "碧蓝航线",
    "碧蓝幻想",
    "战双",
    "阴阳师",
)
INDEX = {name: i for i, name in enumerate(TABLE)}
DEFAULT_KIND = TABLE[0]

_TITLE_SIZE = 45
_TEXT_SIZE = 23
_COLUMN = 9


def offset(total: int, now: int, distance: float) -> float:
    """Offset of the ``now``-th of ``total`` evenly spaced items."""
    if total % 2 == 0:
        return (float(now - total // 2) - 1) * distance
    return (float(now - total // 2) - 1.5) * distance


def rows(total: int, div: int) -> int:
    """Number of rows of ``div`` items needed to hold ``total`` items."""
    return -(-total // div)


def unpack(target: PathLike, dest: PathLike) -> None:
    """Extract the zip archive ``target`` into the directory ``dest``."""
    dest_path = Path(dest)
    dest_path.mkdir(parents=True, exist_ok=True)
    root = dest_path.resolve()
    with zipfile.ZipFile(target) as archive:
        for entry in archive.infolist():
            out = (dest_path / entry.filename).resolve()
            if root != out and root not in out.parents:
                raise ValueError(f"archive entry escapes destination: {entry.filename}")
            if entry.is_dir():
                out.mkdir(parents=True, exist_ok=True)
                continue
            out.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(entry) as src, open(out, "wb") as dst:
                while chunk := src.read(1 << 16):
                    dst.write(chunk)


def random_image(path: PathLike, seed: int) -> str:
    """Pick one entry of a directory, the same one for the same seed."""
    names = sorted(os.listdir(path))
    if not names:
        raise ValueError(f"no images in {path}")
    rng = random.Random(seed)
    return str(Path(path) / names[rng.randrange(len(names))])


def random_text(path: PathLike, seed: int) -> tuple[str, str]:
    """Pick one ``{"title", "content"}`` entry of a JSON list, by seed."""
    with open(path, encoding="utf-8") as fh:
        entries = json.load(fh)
    if not isinstance(entries, list) or not entries:
        raise ValueError(f"no fortune texts in {path}")
    rng = random.Random(seed)
    entry = entries[rng.randrange(len(entries))]
    return entry.get("title", ""), entry.get("content", "")


def daily_seed(user_id: int, today: date) -> int:
    """Seed that stays fixed for a user over one day."""
    return user_id + int(today.strftime("%Y%m%d"))


def background_kind(data: int) -> str:
    """Background set chosen by the low byte of a group's stored data."""
    value = data & 0xFF
    return TABLE[value] if value < len(TABLE) else DEFAULT_KIND


def _load_font(font_path: Optional[PathLike], size: int) -> ImageFont.FreeTypeFont:
    if font_path is None:
        return ImageFont.load_default(size)
    return ImageFont.truetype(str(font_path), size)


def _measure(font, text: str) -> tuple[float, float]:
    width = font.getlength(text)
    try:
        ascent, descent = font.getmetrics()
        height = ascent + descent
    except AttributeError:
        left, top, right, bottom = font.getbbox(text)
        height = bottom - top
    return width, height


def _ascent(font, text: str) -> float:
    try:
        return font.getmetrics()[0]
    except AttributeError:
        return font.getbbox(text)[3]


def _layout(text: str, tw: float, th: float) -> list[tuple[str, float, float]]:
    """Baseline positions of the characters, written in vertical columns."""
    chars = list(text)
    count = len(chars)
    xsum = rows(count, _COLUMN)
    placed = []
    if xsum == 2:
        div = rows(count, 2)
        for i, ch in enumerate(chars):
            xnow = rows(i + 1, div)
            ysum = min(count - (xnow - 1) * div, div)
            ynow = i % div + 1
            x = -offset(xsum, xnow, tw) + 115
            if xnow == 1:
                y = offset(_COLUMN, ynow, th) + 320.0
            else:
                y = offset(_COLUMN, ynow + (_COLUMN - ysum), th) + 320.0
            placed.append((ch, x, y))
    else:
        for i, ch in enumerate(chars):
            xnow = rows(i + 1, _COLUMN)
            ysum = min(count - (xnow - 1) * _COLUMN, _COLUMN)
            ynow = i % _COLUMN + 1
            placed.append(
                (ch, -offset(xsum, xnow, tw) + 115, offset(ysum, ynow, th) + 320.0)
            )
    return placed


def draw(
    background: PathLike,
    title: str,
    text: str,
    font_path: Optional[PathLike] = None,
) -> bytes:
    """Draw a fortune slip and return it as base64-encoded JPEG bytes.

    Without ``font_path`` Pillow's built-in font is used.
    """
    with Image.open(background) as back:
        back = back.convert("RGB")
        width, height = back.size
        canvas = Image.new("RGB", (height, width), (0, 0, 0))
        canvas.paste(back, (0, 0))
    pen = ImageDraw.Draw(canvas)

    title_font = _load_font(font_path, _TITLE_SIZE)
    sw = title_font.getlength(title)
    pen.text(
        (140 - sw / 2, 112 - _ascent(title_font, title)),
        title,
        fill=(255, 255, 255),
        font=title_font,
    )

    body_font = _load_font(font_path, _TEXT_SIZE)
    tw, th = _measure(body_font, "测")
    tw, th = tw + 10, th + 10
    ascent = _ascent(body_font, "测")
    for ch, x, y in _layout(text, tw, th):
        pen.text((x, y - ascent), ch, fill=(0, 0, 0), font=body_font)

    buffer = io.BytesIO()
    canvas.save(buffer, format="JPEG", quality=70)
    return base64.b64encode(buffer.getvalue())