"""Resumable Luma events sync to Google Sheets and Supabase."""

__version__ = "0.3.0"
