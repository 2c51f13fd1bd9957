"""
Flipbook Service
================
PDF-to-flipbook conversion service with a two-tier publication workflow.

Architecture:
    - Job Registry: Ephemeral, thread-safe store of submitted conversion jobs
    - Rasterizer: Renders each PDF page to a JPEG image (PyMuPDF)
    - Conversion Pipeline: Uploads artifacts, persists the record, streams progress
    - Tier Manager: Approve (pending → public), delete, and replace flipbooks
    - Storage: Blob store (page images + source PDFs) and SQLite record store

Version: 1.0.0
"""

__version__ = "1.0.0"
