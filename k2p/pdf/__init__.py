from .assembler import PDFAssembler, PDFQuality

__all__ = [
    "PDFAssembler",
    "PDFQuality",
]
