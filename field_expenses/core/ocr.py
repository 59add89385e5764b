"""
Image preparation and local OCR for receipt files.

Photos from phones are large and may carry transparency or odd EXIF data;
``compress_image`` turns them into a small white-backed JPEG before they are
sent anywhere. The Tesseract/PyMuPDF helpers back the offline ``local``
extraction provider.
"""

import io

MAX_DIMENSION = 1024
JPEG_QUALITY = 70


def compress_image(data: bytes, max_dimension: int = MAX_DIMENSION,
                   quality: int = JPEG_QUALITY) -> bytes:
    """
    Downscale and re-encode an image as JPEG.

    The image is painted onto a white canvas first so transparent PNG areas
    do not turn black, then resized to fit ``max_dimension`` on its longest
    side (aspect ratio kept, never upscaled). Metadata is dropped.
    """
    from PIL import Image, ImageOps

    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except OSError as e:
        raise ValueError(f"Invalid or corrupted image file: {e}") from e

    img = ImageOps.exif_transpose(img)
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        canvas = Image.new("RGB", rgba.size, (255, 255, 255))
        canvas.paste(rgba, mask=rgba.split()[-1])
        img = canvas
    else:
        img = img.convert("RGB")

    w, h = img.size
    scale = min(1.0, max_dimension / max(w, h))
    if scale < 1.0:
        img = img.resize((max(1, int(w * scale)), max(1, int(h * scale))), Image.LANCZOS)

    out = io.BytesIO()
    img.save(out, format="JPEG", quality=quality, optimize=True)
    return out.getvalue()


def ocr_image_to_text(data: bytes) -> str:
    """OCR an image payload to text."""
    import pytesseract
    from PIL import Image

    img = Image.open(io.BytesIO(data))
    # Improve OCR: convert to grayscale
    if img.mode != "L":
        img = img.convert("L")
    return pytesseract.image_to_string(img, lang="por+eng")


def pdf_to_text(data: bytes) -> str:
    """Extract the text layer of a PDF using PyMuPDF."""
    import fitz

    doc = fitz.open(stream=data, filetype="pdf")
    try:
        return "\n".join(page.get_text() for page in doc)
    finally:
        doc.close()


def pdf_first_page_to_png(data: bytes) -> bytes:
    """Rasterize the first page of a PDF, for scanned PDFs without text."""
    import fitz

    doc = fitz.open(stream=data, filetype="pdf")
    try:
        pix = doc[0].get_pixmap(matrix=fitz.Matrix(2, 2), alpha=False)
        return pix.tobytes("png")
    finally:
        doc.close()


def image_to_pdf(data: bytes) -> bytes:
    """Place an image on a single A4 page, scaled to fit, for the claim package."""
    from PIL import Image
    from reportlab.lib.pagesizes import A4
    from reportlab.lib.utils import ImageReader
    from reportlab.pdfgen import canvas

    img = Image.open(io.BytesIO(data))
    w, h = img.size
    page_w, page_h = A4
    scale = min(page_w / w, page_h / h, 1.0)
    new_w, new_h = w * scale, h * scale

    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    x = (page_w - new_w) / 2
    y = (page_h - new_h) / 2
    c.drawImage(ImageReader(img), x, y, width=new_w, height=new_h, preserveAspectRatio=True, anchor="c")
    c.showPage()
    c.save()
    return buf.getvalue()
