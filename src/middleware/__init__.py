# -*- coding: utf-8 -*-
"""
Middleware package for the credit ledger API
"""

from .errors import register_error_handlers

__all__ = ['register_error_handlers']
