import base64
import io

from PIL import Image


def image_bytes(fmt="PNG", size=(64, 64), mode="RGBA", color=(200, 30, 30, 255), **save_kwargs):
    if mode == "RGB" and len(color) == 4:
        color = color[:3]
    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


def data_url(mime, data):
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_url(value):
    header, payload = value.split(",", 1)
    return header[len("data:"):].split(";")[0], base64.b64decode(payload)


def open_data_url(value):
    _, data = decode_data_url(value)
    return Image.open(io.BytesIO(data))
