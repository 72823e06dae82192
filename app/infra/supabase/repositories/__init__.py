"""Supabase repository base"""
from .base import ReadOnlyRepository

__all__ = ['ReadOnlyRepository']
