"""Supabase infrastructure module"""
from .client import SupabaseNotConfigured, get_supabase_client

__all__ = ['SupabaseNotConfigured', 'get_supabase_client']
